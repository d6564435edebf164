"""
Document renderer abstraction module.
Provides a unified interface over rendering backends.
"""
from docmeter.renderers.factory import get_renderer
from docmeter.renderers.base import DocumentRenderer, RenderResult

__all__ = ["get_renderer", "DocumentRenderer", "RenderResult"]
