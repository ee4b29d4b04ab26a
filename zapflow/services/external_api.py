"""
External API client - HTTP requests issued by apiCall and externalData nodes
"""
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional, Any, Dict

import httpx

from ..core.config import settings
from ..flow.errors import ExternalCallError

logger = logging.getLogger(__name__)


@dataclass
class ApiResponse:
    """Response of a successful (2xx) request"""
    status: int
    data: Any = None
    headers: Dict[str, str] = field(default_factory=dict)


class ExternalApiClient(ABC):
    """HTTP collaborator used by integration nodes"""

    @abstractmethod
    async def request(
        self,
        url: str,
        method: str = "GET",
        headers: Optional[Dict[str, str]] = None,
        body: Any = None,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None
    ) -> ApiResponse:
        """
        Issue one request.

        Raises:
            ExternalCallError: on transport failure or a non-2xx status
        """

    async def close(self) -> None:
        """Release client resources"""


class HttpxApiClient(ExternalApiClient):
    """httpx implementation - JSON bodies for objects, raw text otherwise"""

    def __init__(self, timeout: Optional[float] = None, client: Optional[httpx.AsyncClient] = None):
        self.timeout = timeout or settings.EXTERNAL_CALL_TIMEOUT_SECONDS
        self._client = client or httpx.AsyncClient(follow_redirects=True)

    async def request(
        self,
        url: str,
        method: str = "GET",
        headers: Optional[Dict[str, str]] = None,
        body: Any = None,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None
    ) -> ApiResponse:
        method = (method or "GET").upper()
        request_headers = dict(headers or {})
        kwargs: Dict[str, Any] = {}

        if body is not None and method not in ("GET", "HEAD"):
            if isinstance(body, (dict, list)):
                kwargs["json"] = body
            else:
                kwargs["content"] = str(body)

        try:
            response = await self._client.request(
                method,
                url,
                headers=request_headers,
                params=params or None,
                timeout=timeout or self.timeout,
                **kwargs
            )
        except httpx.HTTPError as e:
            logger.error(f"External request {method} {url} failed: {e}")
            raise ExternalCallError(f"{method} {url} failed: {e}") from e

        if not response.is_success:
            logger.warning(f"External request {method} {url} returned {response.status_code}")
            raise ExternalCallError(
                f"{method} {url} returned HTTP {response.status_code}: {response.text[:200]}",
                status=response.status_code
            )

        return ApiResponse(
            status=response.status_code,
            data=self._parse_body(response),
            headers=dict(response.headers)
        )

    @staticmethod
    def _parse_body(response: httpx.Response) -> Any:
        """JSON when the server says so (or the text parses), raw text otherwise"""
        if not response.content:
            return None
        content_type = response.headers.get("content-type", "")
        if "json" in content_type:
            return response.json()
        try:
            return json.loads(response.text)
        except ValueError:
            return response.text

    async def close(self) -> None:
        await self._client.aclose()
