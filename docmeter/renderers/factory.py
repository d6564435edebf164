"""
Renderer factory.
Returns the configured renderer backend.
"""
import logging

from docmeter.renderers.base import DocumentRenderer
from docmeter.renderers.http_renderer import HttpRenderer

logger = logging.getLogger(__name__)


def get_renderer() -> DocumentRenderer:
    """
    Build the rendering backend from settings.

    Returns:
        DocumentRenderer instance

    Raises:
        ValueError: If RENDERER_URL is not configured
    """
    renderer = HttpRenderer()
    if not renderer.is_configured():
        logger.warning("Renderer URL not configured")
        raise ValueError("Renderer not configured. Set RENDERER_URL environment variable.")
    logger.info(f"Using HTTP renderer at {renderer.base_url}")
    return renderer
