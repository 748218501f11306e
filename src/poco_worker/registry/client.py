"""HTTP client for the task registry contract.

View methods go straight to the chain's JSON-RPC endpoint (``query`` with
``call_function``). Change methods need a signed transaction, so they are sent
to a signing relay that holds the worker's key and submits the call on its
behalf.
"""

from __future__ import annotations

import base64
import json
import logging
from collections.abc import Sequence
from typing import Any

import httpx

from poco_worker.errors import RegistryError
from poco_worker.models import (
    Task,
    TaskCollection,
    WorkerStatus,
    task_collection_from_payload,
    task_from_registry,
    worker_status_from_payload,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_RETRIES = 3


class HttpRegistryClient:
    """Registry adapter speaking JSON over HTTP."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        rpc_url: str,
        relay_url: str,
        contract_id: str,
        account_id: str,
        relay_token: str | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.relay_url = relay_url.rstrip("/")
        self.contract_id = contract_id
        self.worker_id = account_id
        headers = {"Content-Type": "application/json"}
        if relay_token:
            headers["Authorization"] = f"Bearer {relay_token}"
        self._client = httpx.Client(
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            headers=headers,
            transport=transport or httpx.HTTPTransport(retries=max_retries),
        )

    def heartbeat(self) -> WorkerStatus:
        payload = self._call("worker_heartbeat", {})
        try:
            status = worker_status_from_payload(payload)
        except TypeError as error:
            raise RegistryError(
                f"Malformed worker_heartbeat response: {error}",
                method="worker_heartbeat",
            ) from error
        logger.debug(
            "Heartbeat: registered=%s current_task=%s qos=%.3f",
            status.is_registered,
            status.current_task,
            status.qos_score,
        )
        return status

    def query_tasks_for_worker(self, worker_id: str) -> TaskCollection:
        payload = self._call("get_tasks_for_worker", {"worker_id": worker_id})
        try:
            return task_collection_from_payload(payload)
        except (TypeError, ValueError) as error:
            raise RegistryError(
                f"Malformed get_tasks_for_worker response: {error}",
                method="get_tasks_for_worker",
            ) from error

    def get_task(self, task_id: str) -> Task | None:
        payload = self._view("get_task", {"task_id": task_id})
        if payload is None:
            return None
        try:
            return task_from_registry(payload)
        except (TypeError, ValueError) as error:
            raise RegistryError(f"Malformed task {task_id}: {error}", method="get_task") from error

    def submit_bid(self, task_id: str) -> bool:
        result = self._call("submit_offer", {"task_id": task_id})
        return bool(result)

    def finalize_task(
        self,
        task_id: str,
        result_ref: str,
        keyframe_timestamps: Sequence[str],
    ) -> bool:
        result = self._call(
            "complete_task",
            {
                "task_id": task_id,
                "result_ipfs": result_ref,
                "keyframe_timestamps": list(keyframe_timestamps),
            },
        )
        logger.info("Task %s marked complete in registry, result %s", task_id, result_ref)
        return result if isinstance(result, bool) else True

    def register_worker(self, hw_acceleration: bool) -> bool:
        result = self._call("register_worker", {"has_hw_acceleration": hw_acceleration})
        return result if isinstance(result, bool) else True

    def check(self) -> None:
        """Fail fast when the RPC endpoint is unreachable."""

        self._post(
            self.rpc_url,
            {"jsonrpc": "2.0", "id": "poco-worker", "method": "status", "params": []},
            method="status",
        )

    def _view(self, method: str, args: dict[str, Any]) -> Any:
        body = {
            "jsonrpc": "2.0",
            "id": "poco-worker",
            "method": "query",
            "params": {
                "request_type": "call_function",
                "finality": "final",
                "account_id": self.contract_id,
                "method_name": method,
                "args_base64": base64.b64encode(json.dumps(args).encode("utf-8")).decode("ascii"),
            },
        }
        payload = self._post(self.rpc_url, body, method=method)
        error = payload.get("error")
        if error:
            raise RegistryError(f"{method} failed: {_error_text(error)}", method=method)
        result = payload.get("result")
        if not isinstance(result, dict):
            raise RegistryError(f"{method} returned no result", method=method)
        if result.get("error"):
            raise RegistryError(f"{method} failed: {_error_text(result['error'])}", method=method)
        raw = result.get("result")
        if not isinstance(raw, list):
            raise RegistryError(f"{method} returned malformed bytes", method=method)
        data = bytes(raw)
        if not data:
            return None
        try:
            return json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as error:
            message = f"{method} returned non-JSON data: {error}"
            raise RegistryError(message, method=method) from error

    def _call(self, method: str, args: dict[str, Any]) -> Any:
        body = {
            "signer_id": self.worker_id,
            "receiver_id": self.contract_id,
            "method_name": method,
            "args": args,
        }
        payload = self._post(f"{self.relay_url}/call", body, method=method)
        error = payload.get("error")
        if error:
            raise RegistryError(f"{method} failed: {_error_text(error)}", method=method)
        return payload.get("result")

    def _post(self, url: str, body: dict[str, Any], *, method: str) -> dict[str, Any]:
        try:
            response = self._client.post(url, json=body)
        except httpx.TimeoutException as error:
            raise RegistryError(f"{method} timed out", method=method) from error
        except httpx.HTTPError as error:
            raise RegistryError(f"{method} transport error: {error}", method=method) from error
        if not response.is_success:
            raise RegistryError(
                f"{method} failed: HTTP {response.status_code} {response.text[:200]}",
                method=method,
            )
        try:
            payload = response.json()
        except json.JSONDecodeError as error:
            raise RegistryError(f"{method} returned non-JSON body", method=method) from error
        if not isinstance(payload, dict):
            raise RegistryError(f"{method} returned a non-object body", method=method)
        return payload

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> HttpRegistryClient:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


def _error_text(error: object) -> str:
    if isinstance(error, dict):
        for key in ("message", "cause", "name"):
            value = error.get(key)
            if isinstance(value, str) and value:
                return value
            if isinstance(value, dict) and isinstance(value.get("name"), str):
                return value["name"]
        return json.dumps(error, sort_keys=True)
    return str(error)
