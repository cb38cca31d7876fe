import json
import socket

import httpx
import pytest

import wnodeprobe.rpc.transport as rpc_transport
from wnodeprobe.rpc.transport import HttpRpcTransport
from wnodeprobe.utils.exceptions import DecodeError, ProtocolError, TransportError


class FakeResponse:
    def __init__(self, status_code: int, text: str):
        self.status_code = status_code
        self.text = text


def _fake_client(responder, sent: list | None = None):
    class FakeClient:
        def __init__(self, timeout: float):
            self.timeout = timeout

        async def __aenter__(self):
            return self

        async def __aexit__(self, exc_type, exc, tb):
            return False

        async def post(self, url: str, content=None, headers=None):
            body = json.loads(content)
            if sent is not None:
                sent.append((url, body, headers, self.timeout))
            return responder(url, body)

    return FakeClient


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest.mark.asyncio
async def test_send_posts_json_rpc_and_returns_result(monkeypatch):
    sent: list = []

    def responder(url, body):
        return FakeResponse(200, json.dumps({"jsonrpc": "2.0", "id": body["id"], "result": "abc"}))

    monkeypatch.setattr(rpc_transport.httpx, "AsyncClient", _fake_client(responder, sent))
    transport = HttpRpcTransport("http://127.0.0.1:8537/", timeout=3.0)
    assert await transport.call("shh_newSymKey") == "abc"
    url, body, headers, timeout = sent[0]
    assert url == "http://127.0.0.1:8537"
    assert body["jsonrpc"] == "2.0"
    assert body["method"] == "shh_newSymKey"
    assert body["params"] == []
    assert headers["Content-Type"] == "application/json"
    assert timeout == 3.0


@pytest.mark.asyncio
async def test_send_returns_error_member_without_raising(monkeypatch):
    def responder(url, body):
        return FakeResponse(
            200,
            json.dumps({"jsonrpc": "2.0", "id": body["id"], "error": {"code": -32000, "message": "filter not found"}}),
        )

    monkeypatch.setattr(rpc_transport.httpx, "AsyncClient", _fake_client(responder))
    transport = HttpRpcTransport("http://127.0.0.1:8536")
    response = await transport.send("shh_getFilterMessages", ["f1"])
    assert response.ok is False
    assert response.error.message == "filter not found"

    with pytest.raises(ProtocolError) as err:
        await transport.call("shh_getFilterMessages", ["f1"])
    assert err.value.rpc_code == -32000
    assert err.value.method == "shh_getFilterMessages"


@pytest.mark.asyncio
async def test_request_ids_are_unique_per_call(monkeypatch):
    sent: list = []

    def responder(url, body):
        return FakeResponse(200, json.dumps({"jsonrpc": "2.0", "id": body["id"], "result": True}))

    monkeypatch.setattr(rpc_transport.httpx, "AsyncClient", _fake_client(responder, sent))
    transport = HttpRpcTransport("http://127.0.0.1:8536")
    await transport.call("shh_version")
    await transport.call("shh_version")
    assert sent[0][1]["id"] != sent[1][1]["id"]


@pytest.mark.asyncio
async def test_malformed_body_is_decode_error(monkeypatch):
    monkeypatch.setattr(
        rpc_transport.httpx,
        "AsyncClient",
        _fake_client(lambda url, body: FakeResponse(200, "not json at all")),
    )
    with pytest.raises(DecodeError) as err:
        await HttpRpcTransport("http://127.0.0.1:8536").call("shh_newSymKey")
    assert err.value.method == "shh_newSymKey"
    assert not isinstance(err.value, TransportError)


@pytest.mark.asyncio
async def test_mismatched_id_is_decode_error(monkeypatch):
    monkeypatch.setattr(
        rpc_transport.httpx,
        "AsyncClient",
        _fake_client(lambda url, body: FakeResponse(200, json.dumps({"jsonrpc": "2.0", "id": -1, "result": "x"}))),
    )
    with pytest.raises(DecodeError):
        await HttpRpcTransport("http://127.0.0.1:8536").call("shh_newSymKey")


@pytest.mark.asyncio
async def test_http_error_with_rpc_body_is_protocol_error(monkeypatch):
    def responder(url, body):
        return FakeResponse(
            400,
            json.dumps({"jsonrpc": "2.0", "id": body["id"], "error": {"code": -32602, "message": "invalid params"}}),
        )

    monkeypatch.setattr(rpc_transport.httpx, "AsyncClient", _fake_client(responder))
    with pytest.raises(ProtocolError) as err:
        await HttpRpcTransport("http://127.0.0.1:8536").call("shh_post", [{}])
    assert err.value.rpc_code == -32602


@pytest.mark.asyncio
async def test_http_error_without_rpc_body_is_transport_error(monkeypatch):
    monkeypatch.setattr(
        rpc_transport.httpx,
        "AsyncClient",
        _fake_client(lambda url, body: FakeResponse(503, "service unavailable")),
    )
    with pytest.raises(TransportError) as err:
        await HttpRpcTransport("http://127.0.0.1:8536").call("shh_version")
    assert err.value.code == "RPC_HTTP_ERROR"
    assert err.value.status_code == 503


@pytest.mark.asyncio
async def test_network_and_timeout_errors_are_transport_errors(monkeypatch):
    def connect_refused(url, body):
        raise httpx.ConnectError("refused", request=httpx.Request("POST", url))

    monkeypatch.setattr(rpc_transport.httpx, "AsyncClient", _fake_client(connect_refused))
    with pytest.raises(TransportError) as err:
        await HttpRpcTransport("http://127.0.0.1:8536").call("shh_version")
    assert err.value.code == "RPC_NETWORK_ERROR"

    def too_slow(url, body):
        raise httpx.ReadTimeout("slow", request=httpx.Request("POST", url))

    monkeypatch.setattr(rpc_transport.httpx, "AsyncClient", _fake_client(too_slow))
    with pytest.raises(TransportError) as err:
        await HttpRpcTransport("http://127.0.0.1:8536").call("shh_version")
    assert err.value.code == "RPC_TIMEOUT"


@pytest.mark.asyncio
async def test_unreachable_node_is_transport_error():
    transport = HttpRpcTransport(f"http://127.0.0.1:{_free_port()}", timeout=2.0)
    with pytest.raises(TransportError) as err:
        await transport.call("shh_version")
    assert err.value.url == transport.base_url
