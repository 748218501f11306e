"""IPFS HTTP API (v0) content store client."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import httpx

from poco_worker.errors import ContentStoreError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 300.0
DEFAULT_MAX_RETRIES = 3


class IpfsContentStore:
    """Upload/download blobs through a Kubo-compatible HTTP API."""

    def __init__(
        self,
        *,
        api_url: str,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self._client = httpx.Client(
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            transport=transport or httpx.HTTPTransport(retries=max_retries),
        )

    def check(self) -> str:
        """Return the node version; raises when the node is unreachable."""

        try:
            response = self._client.post(f"{self.api_url}/version")
        except httpx.HTTPError as error:
            raise ContentStoreError(f"IPFS node unreachable: {error}") from error
        payload = _json_body(response, action="version")
        version = payload.get("Version")
        if not isinstance(version, str):
            raise ContentStoreError("IPFS version response has no Version field")
        logger.info("Connected to IPFS node, version %s", version)
        return version

    def put(self, file_path: Path) -> str:
        if not file_path.is_file():
            raise ContentStoreError(f"File does not exist: {file_path}")
        logger.info("Uploading %s to IPFS", file_path)
        try:
            with file_path.open("rb") as stream:
                response = self._client.post(
                    f"{self.api_url}/add",
                    params={"pin": "true"},
                    files={"file": (file_path.name, stream, "application/octet-stream")},
                )
        except httpx.HTTPError as error:
            raise ContentStoreError(f"IPFS upload failed for {file_path}: {error}") from error
        payload = _json_body(response, action="add")
        cid = payload.get("Hash")
        if not isinstance(cid, str) or not cid:
            raise ContentStoreError("IPFS add response has no Hash field")
        logger.info("Uploaded %s, CID %s", file_path.name, cid)
        return cid

    def get(self, content_ref: str, dest_path: Path) -> None:
        if not content_ref.strip():
            raise ContentStoreError("Empty content reference")
        dest_path.parent.mkdir(parents=True, exist_ok=True)
        logger.info("Downloading %s from IPFS", content_ref)
        try:
            with self._client.stream(
                "POST",
                f"{self.api_url}/cat",
                params={"arg": content_ref},
            ) as response:
                if not response.is_success:
                    response.read()
                    raise ContentStoreError(
                        f"IPFS cat failed for {content_ref}: "
                        f"HTTP {response.status_code} {_error_message(response)}",
                    )
                with dest_path.open("wb") as stream:
                    for chunk in response.iter_bytes():
                        stream.write(chunk)
        except httpx.HTTPError as error:
            dest_path.unlink(missing_ok=True)
            raise ContentStoreError(f"IPFS download failed for {content_ref}: {error}") from error
        except ContentStoreError:
            dest_path.unlink(missing_ok=True)
            raise
        logger.info("Downloaded %s to %s", content_ref, dest_path)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> IpfsContentStore:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


def _json_body(response: httpx.Response, *, action: str) -> dict[str, object]:
    if not response.is_success:
        raise ContentStoreError(
            f"IPFS {action} failed: HTTP {response.status_code} {_error_message(response)}",
        )
    try:
        # `add` may stream one JSON object per line; the last one is the file.
        lines = [line for line in response.text.splitlines() if line.strip()]
        payload = json.loads(lines[-1]) if lines else {}
    except json.JSONDecodeError as error:
        raise ContentStoreError(f"IPFS {action} returned non-JSON body") from error
    if not isinstance(payload, dict):
        raise ContentStoreError(f"IPFS {action} returned a non-object body")
    return payload


def _error_message(response: httpx.Response) -> str:
    text = response.text
    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        return text[:200]
    if isinstance(payload, dict) and isinstance(payload.get("Message"), str):
        return payload["Message"]
    return text[:200]
