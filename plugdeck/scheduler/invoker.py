from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

import httpx

from plugdeck.plugins.manifest import Route


@dataclass
class RouteResult:
    cursor: Any = None
    processed: Optional[int] = None


class RouteInvoker:
    """Calls the plugin route a job is bound to."""

    async def invoke(self, plugin_key: str, route: Route, payload: dict[str, Any]) -> RouteResult:
        raise NotImplementedError

    async def close(self) -> None:
        return None


class HttpRouteInvoker(RouteInvoker):
    """Invokes plugin routes mounted on the host over HTTP."""

    def __init__(self, base_url: str, *, mount_root: str = "/plugins",
                 client: Optional[httpx.AsyncClient] = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.mount_root = mount_root.rstrip("/")
        self._client = client or httpx.AsyncClient()

    def url_for(self, plugin_key: str, route: Route) -> str:
        return f"{self.base_url}{self.mount_root}/{plugin_key}{route.path}"

    async def invoke(self, plugin_key: str, route: Route, payload: dict[str, Any]) -> RouteResult:
        # Cancellation by the caller's wait_for aborts the request
        response = await self._client.request(route.method, self.url_for(plugin_key, route), json=payload)
        response.raise_for_status()
        if not response.content:
            return RouteResult()
        body = response.json()
        if not isinstance(body, dict):
            return RouteResult()
        processed = body.get("processed")
        return RouteResult(
            cursor=body.get("cursor"),
            processed=int(processed) if isinstance(processed, (int, float)) else None,
        )

    async def close(self) -> None:
        await self._client.aclose()
