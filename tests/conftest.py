"""Pytest hooks and fixtures: an in-memory Whisper relay behind httpx.MockTransport."""

from __future__ import annotations

import hashlib
import itertools
import json
import os
import shutil
from dataclasses import dataclass, field
from typing import Any

import httpx
import pytest

from wnodeprobe.shh.client import ShhClient


def pytest_configure(config):
    """Register custom markers (also in pyproject.toml)."""
    config.addinivalue_line(
        "markers",
        "requires_node: needs a real wnode-status binary (skipped in CI)",
    )


def pytest_collection_modifyitems(config, items):
    """Skip requires_node tests in CI or when WNODE_STATUS_BIN is not an executable."""
    binary = os.environ.get("WNODE_STATUS_BIN", "")
    if os.environ.get("CI") != "true" and binary and shutil.which(binary):
        return
    skip = pytest.mark.skip(reason="Requires a wnode-status binary (set WNODE_STATUS_BIN)")
    for item in items:
        if "requires_node" in item.keywords:
            item.add_marker(skip)


class FakeRpcError(Exception):
    def __init__(self, code: int, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


@dataclass
class FakeFilter:
    key_material: str
    topics: set[str]
    polls: int = 0
    # (visible_from_poll, message row)
    pending: list[tuple[int, dict[str, Any]]] = field(default_factory=list)


@dataclass
class FakeNode:
    name: str
    sym_keys: dict[str, str] = field(default_factory=dict)
    filters: dict[str, FakeFilter] = field(default_factory=dict)
    calls: list[str] = field(default_factory=list)


class FakeWhisperNetwork:
    """Whisper-like relay shared by every fake node.

    A post is delivered to filters that exist at post time, on any node, whose
    key material and topic match. ``delivery_delay_polls`` hides a delivered
    message for that many polls of the filter; ``redeliver`` returns
    every message twice in the same poll (to exercise duplicate detection).
    """

    def __init__(self, *, delivery_delay_polls: int = 0, redeliver: bool = False, drop: bool = False):
        self.delivery_delay_polls = delivery_delay_polls
        self.redeliver = redeliver
        self.drop = drop
        self.nodes: dict[str, FakeNode] = {}
        self._ids = itertools.count(1)

    def node(self, name: str) -> FakeNode:
        return self.nodes.setdefault(name, FakeNode(name))

    def transport(self, name: str) -> httpx.MockTransport:
        node = self.node(name)
        return httpx.MockTransport(lambda request: self._handle(node, request))

    def client(self, name: str, port: int) -> ShhClient:
        return ShhClient(f"http://127.0.0.1:{port}", transport=self.transport(name), name=name, timeout=2.0)

    def _new_id(self, node: FakeNode, kind: str) -> str:
        return hashlib.sha256(f"{node.name}:{kind}:{next(self._ids)}".encode()).hexdigest()

    def _handle(self, node: FakeNode, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        method = body["method"]
        params = body.get("params") or []
        node.calls.append(method)
        try:
            result = self._dispatch(node, method, params)
        except FakeRpcError as exc:
            return httpx.Response(
                200,
                json={"jsonrpc": "2.0", "id": body["id"], "error": {"code": exc.code, "message": exc.message}},
            )
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})

    def _dispatch(self, node: FakeNode, method: str, params: list[Any]) -> Any:
        if method == "shh_version":
            return "6.0"
        if method == "shh_newSymKey":
            key_id = self._new_id(node, "key")
            node.sym_keys[key_id] = "0x" + hashlib.sha256(key_id.encode()).hexdigest()
            return key_id
        if method == "shh_getSymKey":
            return self._material(node, params[0])
        if method == "shh_addSymKey":
            key_id = self._new_id(node, "key")
            node.sym_keys[key_id] = params[0]
            return key_id
        if method == "shh_newMessageFilter":
            req = params[0]
            material = self._material(node, req["symKeyID"])
            filter_id = self._new_id(node, "filter")
            node.filters[filter_id] = FakeFilter(key_material=material, topics=set(req["topics"]))
            return filter_id
        if method == "shh_deleteMessageFilter":
            return node.filters.pop(params[0], None) is not None
        if method == "shh_post":
            return self._post(node, params[0])
        if method == "shh_getFilterMessages":
            return self._poll(node, params[0])
        raise FakeRpcError(-32601, f"the method {method} does not exist/is not available")

    def _material(self, node: FakeNode, key_id: str) -> str:
        if key_id not in node.sym_keys:
            raise FakeRpcError(-32000, "non-existent key ID")
        return node.sym_keys[key_id]

    def _post(self, node: FakeNode, req: dict[str, Any]) -> str:
        material = self._material(node, req["symKeyID"])
        if req.get("powTime", 0) <= 0:
            raise FakeRpcError(-32000, "insufficient PoW time")
        message_hash = "0x" + hashlib.sha256(f"{req['topic']}:{req['payload']}:{next(self._ids)}".encode()).hexdigest()
        row = {
            "topic": req["topic"],
            "payload": req["payload"],
            "padding": "0x00",
            "pow": 0.5,
            "ttl": req.get("TTL", 0),
            "timestamp": 1700000000,
            "hash": message_hash,
        }
        if not self.drop:
            for peer in self.nodes.values():
                for flt in peer.filters.values():
                    if flt.key_material == material and req["topic"] in flt.topics:
                        flt.pending.append((flt.polls + self.delivery_delay_polls, row))
        return message_hash

    def _poll(self, node: FakeNode, filter_id: str) -> list[dict[str, Any]]:
        flt = node.filters.get(filter_id)
        if flt is None:
            raise FakeRpcError(-32000, "filter not found")
        visible = [row for due, row in flt.pending if due <= flt.polls]
        flt.pending = [(due, row) for due, row in flt.pending if due > flt.polls]
        flt.polls += 1
        if self.redeliver:
            visible = visible + visible
        return visible


@pytest.fixture
def whisper_network() -> FakeWhisperNetwork:
    return FakeWhisperNetwork()


@pytest.fixture
def node_a(whisper_network: FakeWhisperNetwork) -> ShhClient:
    return whisper_network.client("node-a", 8537)


@pytest.fixture
def node_b(whisper_network: FakeWhisperNetwork) -> ShhClient:
    return whisper_network.client("node-b", 8536)


@pytest.fixture
def make_network():
    """Factory for relays with non-default delivery behaviour."""
    return FakeWhisperNetwork
