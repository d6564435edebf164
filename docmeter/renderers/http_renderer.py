"""
Renderer backed by an HTTP rendering service.

POST {renderer_url}/render with a JSON body; the service answers with the
PDF bytes and reports the page count in X-Page-Count and truncation in
X-Truncated.
"""
import logging
from typing import Any, Dict, Optional

import httpx

from docmeter.config import settings
from docmeter.errors import RenderError
from docmeter.renderers.base import DocumentRenderer, RenderResult, SUPPORTED_INPUT_TYPES

logger = logging.getLogger(__name__)


class HttpRenderer(DocumentRenderer):
    """Client for the rendering service."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = (base_url or settings.renderer_url or "").rstrip("/")
        self.timeout_seconds = timeout_seconds or settings.renderer_timeout_seconds
        self.http_client = http_client

    def is_configured(self) -> bool:
        return bool(self.base_url)

    async def render(
        self,
        input_type: str,
        content: str,
        options: Optional[Dict[str, Any]] = None,
        max_pages: Optional[int] = None,
    ) -> RenderResult:
        if input_type not in SUPPORTED_INPUT_TYPES:
            raise RenderError(f"Unsupported input type: {input_type}")

        body = {
            "input_type": input_type,
            "content": content,
            "options": options or {},
            "max_pages": max_pages,
        }
        try:
            if self.http_client is not None:
                response = await self.http_client.post(
                    f"{self.base_url}/render", json=body, timeout=self.timeout_seconds
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                    response = await client.post(f"{self.base_url}/render", json=body)
        except httpx.HTTPError as e:
            logger.error(f"Renderer request failed: {e}")
            raise RenderError(f"Renderer unavailable: {e}")

        if response.status_code != 200:
            logger.error(f"Renderer returned {response.status_code}: {response.text[:200]}")
            raise RenderError(f"Renderer returned HTTP {response.status_code}")

        try:
            pages = int(response.headers.get("X-Page-Count", "0"))
        except ValueError:
            raise RenderError("Renderer returned an invalid page count")
        truncated = response.headers.get("X-Truncated", "false").lower() == "true"
        return RenderResult(
            document=response.content,
            pages=pages,
            truncated=truncated,
            content_type=response.headers.get("Content-Type", "application/pdf"),
        )
