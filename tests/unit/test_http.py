import json

import httpx
import pytest

from apiflow.errors import TransportError
from apiflow.http import HttpxExecutor


def _executor(handler) -> HttpxExecutor:
    client = httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url="https://api.test"
    )
    return HttpxExecutor(client=client)


@pytest.mark.asyncio
async def test_get_with_params_and_json_response():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("authorization")
        return httpx.Response(200, json={"data": {"id": 1}})

    executor = _executor(handler)
    response = await executor.execute(
        "get",
        "/users",
        headers={"Authorization": "Bearer t"},
        params={"page": 2, "filter": None},
    )

    assert seen["url"] == "https://api.test/users?page=2"
    assert seen["auth"] == "Bearer t"
    assert response.status == 200
    assert response.ok
    assert response.body == {"data": {"id": 1}}
    assert response.headers["content-type"] == "application/json"
    assert response.elapsed_ms >= 0


@pytest.mark.asyncio
async def test_object_body_is_sent_as_json():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["body"] = json.loads(request.content)
        seen["type"] = request.headers.get("content-type")
        return httpx.Response(201, json={"id": "n1"})

    response = await _executor(handler).execute("POST", "/items", body={"name": "a"})

    assert seen == {"method": "POST", "body": {"name": "a"}, "type": "application/json"}
    assert response.status == 201


@pytest.mark.asyncio
async def test_text_body_gets_plain_content_type():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = request.content.decode()
        seen["type"] = request.headers.get("content-type")
        return httpx.Response(200, text="ok")

    response = await _executor(handler).execute("PUT", "/notes/1", body="hello")

    assert seen == {"body": "hello", "type": "text/plain"}
    assert response.body == "ok"


@pytest.mark.asyncio
async def test_non_success_status_is_returned_not_raised():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"error": "not found"})

    response = await _executor(handler).execute("GET", "/missing")
    assert response.status == 404
    assert not response.ok
    assert response.body == {"error": "not found"}


@pytest.mark.asyncio
async def test_invalid_json_body_is_reported():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200, content=b"{broken", headers={"content-type": "application/json"}
        )

    response = await _executor(handler).execute("GET", "/broken")
    assert "parseError" in response.body


@pytest.mark.asyncio
async def test_network_failure_raises_transport_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    executor = _executor(handler)
    with pytest.raises(TransportError):
        await executor.execute("GET", "/down")
