"""Shared helper utilities."""

from .slug import slugify

__all__ = ["slugify"]
