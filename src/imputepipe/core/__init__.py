"""Core run layout: folder roles and deterministic artifact paths."""

from imputepipe.core.layout import RunLayout, BINARY_EXTENSIONS

__all__ = ['RunLayout', 'BINARY_EXTENSIONS']
