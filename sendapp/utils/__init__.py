"""Utility helpers for the send bot."""

from .markdown import escape_markdown_v1, escape_markdown_v2

__all__ = ["escape_markdown_v1", "escape_markdown_v2"]
