"""
Base class for document renderers.
All renderers must implement this interface so the job processor can use
any backend without knowing which one.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

SUPPORTED_INPUT_TYPES = ("html", "markdown")


@dataclass
class RenderResult:
    """Rendered document and its page accounting."""

    document: bytes
    pages: int
    truncated: bool = False
    content_type: str = "application/pdf"


class DocumentRenderer(ABC):
    """Abstract base class for document renderers."""

    @abstractmethod
    async def render(
        self,
        input_type: str,
        content: str,
        options: Optional[Dict[str, Any]] = None,
        max_pages: Optional[int] = None,
    ) -> RenderResult:
        """
        Render content into a PDF.

        Args:
            input_type: "html" or "markdown"
            content: Source document
            options: Renderer options (page size, margins, ...)
            max_pages: Truncate output to this many pages when set

        Returns:
            RenderResult with the document bytes and page count

        Raises:
            RenderError: If rendering fails
        """
        pass

    def is_configured(self) -> bool:
        """Check whether the renderer can be used."""
        return True
