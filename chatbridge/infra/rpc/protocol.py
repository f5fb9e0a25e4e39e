"""JSON-RPC 2.0 framing: one JSON object per line."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Union

# Standard JSON-RPC error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

# Server -> subscriber push carrying a session snapshot
STATE_NOTIFICATION = "conversation.state"


@dataclass(frozen=True)
class JsonRpcRequest:
    method: str
    params: dict[str, Any] = field(default_factory=dict)
    id: int | str = 0

    def to_dict(self) -> dict:
        return {"jsonrpc": "2.0", "method": self.method, "params": self.params, "id": self.id}


@dataclass(frozen=True)
class JsonRpcResponse:
    id: int | str = 0
    result: Any = None
    error: dict | None = None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def to_dict(self) -> dict:
        body: dict = {"jsonrpc": "2.0", "id": self.id}
        if self.error is not None:
            body["error"] = self.error
        else:
            body["result"] = self.result
        return body


@dataclass(frozen=True)
class JsonRpcNotification:
    """A message without an id; never answered."""

    method: str
    params: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"jsonrpc": "2.0", "method": self.method, "params": self.params}


JsonRpcMessage = Union[JsonRpcRequest, JsonRpcResponse, JsonRpcNotification]


def encode(msg: JsonRpcMessage) -> bytes:
    return json.dumps(msg.to_dict(), default=str).encode() + b"\n"


def decode(line: bytes) -> JsonRpcMessage:
    """Parse one line. Raises ValueError (json.JSONDecodeError) on bad input."""
    data = json.loads(line)
    if not isinstance(data, dict):
        raise ValueError("JSON-RPC message must be an object")
    if "method" in data:
        params = data.get("params") or {}
        if "id" in data:
            return JsonRpcRequest(method=data["method"], params=params, id=data["id"])
        return JsonRpcNotification(method=data["method"], params=params)
    return JsonRpcResponse(id=data.get("id", 0), result=data.get("result"), error=data.get("error"))


def make_error(id: int | str, code: int, message: str) -> JsonRpcResponse:
    return JsonRpcResponse(id=id, error={"code": code, "message": message})


def state_notification(snapshot: dict) -> JsonRpcNotification:
    return JsonRpcNotification(method=STATE_NOTIFICATION, params=snapshot)
