"""Minimal JSON-RPC 2.0 client for the chain endpoints fixture generation reads."""

from __future__ import annotations

import itertools
import json
import urllib.error
import urllib.request
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any, Final

from fp_harness.observability.logging import redact_text

Transport = Callable[[str, bytes, float], bytes]

DEFAULT_RPC_TIMEOUT_SECONDS: Final[float] = 30.0


class RpcError(RuntimeError):
    """Raised for transport failures, JSON-RPC error objects and malformed replies."""

    def __init__(self, method: str, message: str, *, code: int | None = None) -> None:
        self.method = method
        self.code = code
        suffix = f" (code {code})" if code is not None else ""
        super().__init__(f"{method}: {message}{suffix}")


def urllib_transport(url: str, body: bytes, timeout_seconds: float) -> bytes:
    request = urllib.request.Request(
        url,
        data=body,
        method="POST",
        headers={"Content-Type": "application/json", "Accept": "application/json"},
    )
    with urllib.request.urlopen(request, timeout=timeout_seconds) as response:  # noqa: S310
        return response.read()


class JsonRpcClient:
    def __init__(
        self,
        url: str,
        *,
        timeout_seconds: float = DEFAULT_RPC_TIMEOUT_SECONDS,
        transport: Transport | None = None,
    ) -> None:
        if not url.strip():
            raise ValueError("RPC url must not be empty")
        self.url = url
        self._timeout_seconds = timeout_seconds
        self._transport = transport or urllib_transport
        self._ids = itertools.count(1)

    def call(self, method: str, params: Sequence[Any] = ()) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": list(params)}
        body = json.dumps(payload).encode("utf-8")
        try:
            raw = self._transport(self.url, body, self._timeout_seconds)
        except urllib.error.HTTPError as exc:
            raise RpcError(method, f"HTTP {exc.code} from {redact_text(self.url)}") from exc
        except (urllib.error.URLError, OSError) as exc:
            raise RpcError(method, f"request to {redact_text(self.url)} failed: {exc}") from exc

        try:
            reply = json.loads(raw)
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise RpcError(method, "response is not valid JSON") from exc
        if not isinstance(reply, dict):
            raise RpcError(method, "response is not a JSON object")

        error = reply.get("error")
        if error is not None:
            if isinstance(error, dict):
                code = error.get("code")
                raise RpcError(
                    method,
                    str(error.get("message", "unknown error")),
                    code=code if isinstance(code, int) else None,
                )
            raise RpcError(method, str(error))
        if "result" not in reply:
            raise RpcError(method, "response has neither result nor error")
        return reply["result"]

    def chain_id(self) -> int:
        return _quantity(self.call("eth_chainId"), "eth_chainId")

    def block_hash(self, number: int) -> str:
        """Hash of the block at ``number``; a missing block is an error."""
        block = self.call("eth_getBlockByNumber", [hex(number), False])
        if block is None:
            raise RpcError("eth_getBlockByNumber", f"block {number} not found")
        if not isinstance(block, dict) or not isinstance(block.get("hash"), str):
            raise RpcError("eth_getBlockByNumber", "block has no hash")
        return block["hash"]

    def output_at_block(self, number: int) -> OutputAtBlock:
        result = self.call("optimism_outputAtBlock", [hex(number)])
        try:
            output_root = result["outputRoot"]
            l1_origin = result["blockRef"]["l1origin"]["number"]
        except (KeyError, TypeError) as exc:
            raise RpcError("optimism_outputAtBlock", f"unexpected response shape: missing {exc}") from exc
        if not isinstance(output_root, str):
            raise RpcError("optimism_outputAtBlock", "outputRoot is not a string")
        return OutputAtBlock(
            output_root=output_root,
            l1_origin_number=_quantity(l1_origin, "optimism_outputAtBlock"),
        )


@dataclass(frozen=True, slots=True)
class OutputAtBlock:
    output_root: str
    l1_origin_number: int


def _quantity(value: object, method: str) -> int:
    # op-node reports block numbers as JSON integers, execution clients as hex strings.
    if isinstance(value, bool):
        raise RpcError(method, f"expected quantity, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 16) if value.lower().startswith("0x") else int(value)
        except ValueError:
            pass
    raise RpcError(method, f"expected quantity, got {value!r}")


__all__ = ["DEFAULT_RPC_TIMEOUT_SECONDS", "JsonRpcClient", "OutputAtBlock", "RpcError", "Transport", "urllib_transport"]
