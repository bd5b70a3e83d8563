from __future__ import annotations

import itertools
import json
import logging
import socket
from typing import Any, Callable, TypeVar
from urllib.error import HTTPError, URLError
from urllib.parse import urlparse
from urllib.request import Request, urlopen

from .models import BlockView, HeaderInfo, Transaction, from_hex, hex_uint

log = logging.getLogger(__name__)

T = TypeVar("T")


class NetworkError(Exception):
    pass


class Unreachable(NetworkError):
    pass


class RpcError(NetworkError):
    def __init__(self, method: str, code: int | None, message: str) -> None:
        super().__init__(f"{method} failed ({code}): {message}")
        self.method = method
        self.code = code
        self.message = message


class TransactionRejected(RpcError):
    pass


def normalize_url(url: str) -> str:
    raw = url.strip()
    if not raw:
        raise ValueError("JSON-RPC URL must not be empty")
    if "://" not in raw:
        raw = f"http://{raw}"
    parsed = urlparse(raw)
    if parsed.scheme not in {"http", "https"}:
        raise ValueError("JSON-RPC URL scheme must be http or https")
    if not parsed.netloc:
        raise ValueError("JSON-RPC URL must include host:port")
    return raw


class NodeClient:
    """Blocking JSON-RPC client for a CKB node; every call carries the request timeout."""

    def __init__(self, url: str, timeout_ms: int = 10_000) -> None:
        self.url = normalize_url(url)
        self.timeout = max(1, int(timeout_ms)) / 1000.0
        self._ids = itertools.count(1)

    def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        data = json.dumps(payload).encode("utf-8")
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        req = Request(url=self.url, data=data, method="POST", headers=headers)
        try:
            with urlopen(req, timeout=self.timeout) as response:
                raw = response.read()
        except HTTPError as exc:
            body = exc.read().decode("utf-8", errors="replace")
            raise Unreachable(f"HTTP {exc.code} calling {self.url}: {body}") from exc
        except URLError as exc:
            if isinstance(getattr(exc, "reason", None), (TimeoutError, socket.timeout)):
                raise Unreachable(f"Timeout calling {self.url}") from exc
            raise Unreachable(f"Network error calling {self.url}: {exc}") from exc
        except (TimeoutError, socket.timeout) as exc:
            raise Unreachable(f"Timeout calling {self.url}") from exc
        except OSError as exc:
            raise Unreachable(f"Network error calling {self.url}: {exc}") from exc

        try:
            decoded = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise Unreachable(f"Invalid JSON response from {self.url}") from exc
        if not isinstance(decoded, dict):
            raise Unreachable(f"Expected JSON object response from {self.url}")
        return decoded

    def call(self, method: str, *params: Any) -> Any:
        request_id = next(self._ids)
        response = self._post({"jsonrpc": "2.0", "id": request_id, "method": method, "params": list(params)})
        error = response.get("error")
        if error is not None:
            if isinstance(error, dict):
                raise RpcError(method, error.get("code"), str(error.get("message", "")))
            raise RpcError(method, None, str(error))
        if "result" not in response:
            raise Unreachable(f"{method}: response carries neither result nor error")
        return response["result"]

    def _decode(self, method: str, result: Any, parser: Callable[[Any], T]) -> T:
        try:
            return parser(result)
        except (KeyError, TypeError, ValueError) as exc:
            raise Unreachable(f"{method}: malformed result from {self.url}: {exc}") from exc

    def get_tip_header(self) -> HeaderInfo:
        return self._decode("get_tip_header", self.call("get_tip_header"), HeaderInfo.from_json)

    def get_header_by_number(self, number: int) -> HeaderInfo | None:
        result = self.call("get_header_by_number", hex_uint(number))
        return None if result is None else self._decode("get_header_by_number", result, HeaderInfo.from_json)

    def get_block_by_number(self, number: int) -> BlockView | None:
        result = self.call("get_block_by_number", hex_uint(number))
        return None if result is None else self._decode("get_block_by_number", result, BlockView.from_json)

    def send_transaction(self, tx: Transaction) -> bytes:
        try:
            result = self.call("send_transaction", tx.to_json(), "passthrough")
        except RpcError as exc:
            raise TransactionRejected(exc.method, exc.code, exc.message) from exc
        tx_hash = self._decode("send_transaction", result, from_hex)
        log.debug("node accepted tx 0x%s", tx_hash.hex())
        return tx_hash
