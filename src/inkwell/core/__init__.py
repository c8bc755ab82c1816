"""Core domain types and utilities."""

from .ranges import TextRange

__all__ = ["TextRange"]
