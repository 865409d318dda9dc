#!/usr/bin/env python3
"""
Unit tests for the HTTP route invoker.

Requests go through ``httpx.MockTransport`` so no server is needed.
"""

import json

import httpx
import pytest

from plugdeck.plugins.manifest import Route
from plugdeck.scheduler.invoker import HttpRouteInvoker, RouteResult

SYNC_ROUTE = Route(method="POST", path="/sync")


def make_invoker(handler, **kwargs):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpRouteInvoker("http://host:8080/", client=client, **kwargs)


def test_url_for():
    invoker = HttpRouteInvoker("http://host:8080/", mount_root="/apps/", client=httpx.AsyncClient())
    assert invoker.url_for("github", SYNC_ROUTE) == "http://host:8080/apps/github/sync"


@pytest.mark.asyncio
async def test_invoke_posts_payload_and_reads_result():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"cursor": "c2", "processed": 12})

    invoker = make_invoker(handler)
    payload = {"pluginKey": "github", "job": "sync", "cursor": "c1", "attempt": 1}

    result = await invoker.invoke("github", SYNC_ROUTE, payload)

    assert result == RouteResult(cursor="c2", processed=12)
    request = seen[0]
    assert request.method == "POST"
    assert str(request.url) == "http://host:8080/plugins/github/sync"
    assert json.loads(request.content) == payload
    await invoker.close()


@pytest.mark.asyncio
async def test_empty_body_means_no_cursor():
    invoker = make_invoker(lambda request: httpx.Response(204))
    assert await invoker.invoke("github", SYNC_ROUTE, {}) == RouteResult()


@pytest.mark.asyncio
async def test_non_object_body_is_ignored():
    invoker = make_invoker(lambda request: httpx.Response(200, json=["a", "b"]))
    assert await invoker.invoke("github", SYNC_ROUTE, {}) == RouteResult()


@pytest.mark.asyncio
async def test_error_status_raises():
    invoker = make_invoker(lambda request: httpx.Response(500, json={"error": "down"}))
    with pytest.raises(httpx.HTTPStatusError):
        await invoker.invoke("github", SYNC_ROUTE, {})


@pytest.mark.asyncio
async def test_close_closes_client():
    invoker = make_invoker(lambda request: httpx.Response(200))
    await invoker.close()
    assert invoker._client.is_closed
