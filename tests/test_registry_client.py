from __future__ import annotations

import base64
import json

import allure
import httpx
import pytest

from poco_worker.errors import RegistryError
from poco_worker.registry import HttpRegistryClient

pytestmark = [
    allure.epic("Adapters"),
    allure.feature("Task Registry"),
]

RPC_URL = "https://rpc.test/"
RELAY_URL = "https://relay.test"


def _client(handler) -> HttpRegistryClient:
    return HttpRegistryClient(
        rpc_url=RPC_URL,
        relay_url=RELAY_URL + "/",
        contract_id="registry.testnet",
        account_id="worker-1.testnet",
        relay_token="secret",
        transport=httpx.MockTransport(handler),
    )


def _view_result(value) -> dict:
    raw = json.dumps(value).encode("utf-8") if value is not None else b""
    return {"jsonrpc": "2.0", "id": "poco-worker", "result": {"result": list(raw), "logs": []}}


def test_heartbeat_posts_signed_call_to_relay() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={"result": {"is_registered": True, "current_task": "t3", "qos_score": 0.9}},
        )

    status = _client(handler).heartbeat()

    assert status.is_registered
    assert status.current_task == "t3"
    assert status.qos_score == pytest.approx(0.9)
    request = seen[0]
    assert str(request.url) == "https://relay.test/call"
    assert request.headers["Authorization"] == "Bearer secret"
    assert json.loads(request.content) == {
        "signer_id": "worker-1.testnet",
        "receiver_id": "registry.testnet",
        "method_name": "worker_heartbeat",
        "args": {},
    }


def test_heartbeat_without_worker_record_means_unregistered() -> None:
    status = _client(lambda request: httpx.Response(200, json={"result": None})).heartbeat()

    assert not status.is_registered
    assert status.current_task is None


def test_query_tasks_for_worker_parses_collection() -> None:
    payload = {
        "assigned_tasks": [
            {
                "task_id": "a1",
                "source_ipfs": "QmA",
                "status": "Assigned",
                "broadcaster_id": "bc.testnet",
                "requirements": {"target_codec": "h265", "target_bitrate": "2M"},
                "assigned_verifiers": ["v1", "v2"],
                "assignment_time": 1700000000000000000,
            },
        ],
        "available_tasks": [{"task_id": "o1", "source_ipfs": "QmO", "status": "Published"}],
        "queued_tasks": ["q1"],
    }

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        assert body["method_name"] == "get_tasks_for_worker"
        assert body["args"] == {"worker_id": "worker-1.testnet"}
        return httpx.Response(200, json={"result": payload})

    collection = _client(handler).query_tasks_for_worker("worker-1.testnet")

    assigned = collection.assigned_tasks[0]
    assert assigned.task_id == "a1"
    assert assigned.remote_status == "Assigned"
    assert assigned.requirements.target_codec == "h265"
    assert assigned.assigned_verifiers == ["v1", "v2"]
    assert collection.available_tasks[0].remote_status == "Published"
    assert collection.queued_tasks == ["q1"]


def test_malformed_collection_raises_registry_error() -> None:
    client = _client(
        lambda request: httpx.Response(200, json={"result": {"assigned_tasks": [{"x": 1}]}}),
    )

    with pytest.raises(RegistryError, match="Malformed get_tasks_for_worker"):
        client.query_tasks_for_worker("worker-1.testnet")


def test_get_task_uses_view_query_with_base64_args() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        assert str(request.url) == RPC_URL
        assert body["method"] == "query"
        params = body["params"]
        assert params["request_type"] == "call_function"
        assert params["account_id"] == "registry.testnet"
        assert params["method_name"] == "get_task"
        assert json.loads(base64.b64decode(params["args_base64"])) == {"task_id": "t3"}
        return httpx.Response(200, json=_view_result({"task_id": "t3", "source_ipfs": "QmS"}))

    task = _client(handler).get_task("t3")

    assert task is not None
    assert task.task_id == "t3"
    assert task.source_ipfs == "QmS"


def test_get_task_returns_none_for_empty_result() -> None:
    client = _client(lambda request: httpx.Response(200, json=_view_result(None)))

    assert client.get_task("x") is None


def test_view_error_is_raised() -> None:
    client = _client(
        lambda request: httpx.Response(
            200,
            json={"jsonrpc": "2.0", "id": "poco-worker", "error": {"message": "Server error"}},
        ),
    )

    with pytest.raises(RegistryError, match="get_task failed"):
        client.get_task("t3")


def test_finalize_task_sends_result_and_keyframes() -> None:
    bodies: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"result": None})

    accepted = _client(handler).finalize_task("t1", "QmOut", ["0.0", "2.0"])

    assert accepted is True
    assert bodies[0]["method_name"] == "complete_task"
    assert bodies[0]["args"] == {
        "task_id": "t1",
        "result_ipfs": "QmOut",
        "keyframe_timestamps": ["0.0", "2.0"],
    }


def test_submit_bid_and_register_worker() -> None:
    methods: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        methods.append(body["method_name"])
        if body["method_name"] == "submit_offer":
            return httpx.Response(200, json={"result": False})
        assert body["args"] == {"has_hw_acceleration": True}
        return httpx.Response(200, json={"result": True})

    client = _client(handler)

    assert client.submit_bid("o1") is False
    assert client.register_worker(True) is True
    assert methods == ["submit_offer", "register_worker"]


def test_relay_error_payload_raises_with_method() -> None:
    client = _client(
        lambda request: httpx.Response(200, json={"error": "Task is not available for bidding"}),
    )

    with pytest.raises(RegistryError, match="not available") as excinfo:
        client.submit_bid("o1")

    assert excinfo.value.method == "submit_offer"


def test_http_failure_and_transport_errors_raise_registry_error() -> None:
    with pytest.raises(RegistryError, match="HTTP 502"):
        _client(lambda request: httpx.Response(502, text="bad gateway")).heartbeat()

    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(RegistryError, match="transport error"):
        _client(refuse).check()
