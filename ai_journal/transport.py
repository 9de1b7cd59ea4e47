from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Protocol

import requests

from .errors import ProtocolError, TransportError

_QUERY_RE = re.compile(r"\?[^\s'\"()]*")


@dataclass(frozen=True)
class HttpResponse:
    status: int
    reason: str
    text: str

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class Transport(Protocol):
    def request(self, url: str, method: str, headers: dict[str, str], body: str | None) -> HttpResponse:
        ...


class RequestsTransport:
    """Single request/response primitive over ``requests``.

    No retries and no streaming. ``timeout`` defaults to None, so a hung
    server blocks the calling action until the connection fails.
    """

    def __init__(self, timeout: float | None = None, session: requests.Session | None = None):
        self._timeout = timeout
        self._session = session or requests.Session()

    def request(self, url: str, method: str, headers: dict[str, str], body: str | None) -> HttpResponse:
        try:
            response = self._session.request(
                method,
                url,
                headers=headers,
                data=body.encode("utf-8") if body is not None else None,
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            raise TransportError("HTTP", reason=redact_query(f"{type(exc).__name__}: {exc}")) from exc
        return HttpResponse(status=response.status_code, reason=response.reason or "", text=response.text)


def post_json(
    transport: Transport,
    url: str,
    payload: dict[str, Any],
    headers: dict[str, str],
    label: str,
) -> HttpResponse:
    """POST ``payload`` as JSON; non-2xx statuses raise TransportError."""
    try:
        response = transport.request(
            url,
            "POST",
            {"Content-Type": "application/json", **headers},
            json.dumps(payload),
        )
    except TransportError as exc:
        raise TransportError(label, status=exc.status, reason=exc.reason, body=exc.body) from exc
    if not response.ok:
        raise TransportError(
            label,
            status=response.status,
            reason=response.reason,
            body=response.text,
            provider_message=provider_error_message(response.text),
        )
    return response


def provider_error_message(body: str) -> str | None:
    """Extract ``error.message`` from a structured JSON error body."""
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, TypeError):
        return None
    if not isinstance(data, dict):
        return None
    error = data.get("error")
    if isinstance(error, dict):
        message = error.get("message")
        if isinstance(message, str) and message.strip():
            return message.strip()
    return None


def decode_json(response: HttpResponse, label: str) -> dict[str, Any]:
    try:
        data = json.loads(response.text)
    except json.JSONDecodeError as exc:
        raise ProtocolError(f"{label} returned a non-JSON response.") from exc
    if not isinstance(data, dict):
        raise ProtocolError(f"{label} returned an unexpected response shape.")
    return data


def redact_query(text: str) -> str:
    """Drop URL query strings, which can carry API keys, from an error message."""
    return _QUERY_RE.sub("", text)
