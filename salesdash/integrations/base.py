"""
Base Integration Class

Upstream clients share an optional httpx.AsyncClient. When none is injected
each call opens a short-lived client with the configured timeout.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

import httpx
import structlog

logger = structlog.get_logger(__name__)


def safe_json(response: httpx.Response) -> Any:
    """Decode a JSON body; non-JSON bodies come back as ``{"raw": text}``."""
    text = response.text
    if not text:
        return None
    try:
        return response.json()
    except ValueError:
        return {"raw": text}


def body_excerpt(response: httpx.Response, limit: int = 500) -> str:
    return response.text[:limit]


class BaseIntegration:
    """
    Common plumbing for upstream HTTP integrations

    Subclasses set ``source_name`` and implement ``is_configured``.
    """

    source_name = "upstream"

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None, timeout: float = 30.0):
        self._http = http_client
        self.timeout = timeout

    @property
    def is_configured(self) -> bool:
        raise NotImplementedError

    @asynccontextmanager
    async def session(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http is not None:
            yield self._http
            return
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            yield client
