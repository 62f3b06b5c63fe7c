"""Templating — kida-rendered return values."""

from tarry.templating.returns import InlineTemplate, Template

__all__ = ["InlineTemplate", "Template"]
