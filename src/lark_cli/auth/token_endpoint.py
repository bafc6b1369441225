"""
JSON calls to the Lark token endpoints.

Token endpoints are called through a ``google.auth.transport.Request`` callable
so tests can inject a fake transport. Calls are never retried here; transport
failures surface as ``google.auth.exceptions.TransportError``.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict

logger = logging.getLogger(__name__)

_JSON_HEADERS = {"Content-Type": "application/json; charset=utf-8"}


@dataclass
class TokenResponse:
    """Decoded token endpoint response."""

    status: int
    body: Dict[str, Any] = field(default_factory=dict)
    raw: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def code(self) -> int:
        try:
            return int(self.body.get("code") or 0)
        except (TypeError, ValueError):
            return 0

    @property
    def message(self) -> str:
        for key in ("error_description", "msg", "error"):
            value = self.body.get(key)
            if value:
                return str(value)
        return self.raw.strip() or f"HTTP {self.status}"


def post_json(request: Any, url: str, payload: Dict[str, Any], timeout: int) -> TokenResponse:
    """
    POST a JSON body and decode the JSON response.

    Args:
        request: google.auth transport Request callable.
        url: Endpoint URL.
        payload: JSON body.
        timeout: Request timeout in seconds.

    Returns:
        TokenResponse; a non-JSON body yields an empty ``body``.
    """
    logger.debug(f"POST {url}")
    response = request(
        url=url,
        method="POST",
        body=json.dumps(payload).encode("utf-8"),
        headers=dict(_JSON_HEADERS),
        timeout=timeout,
    )
    data = response.data
    raw = data.decode("utf-8", errors="replace") if isinstance(data, bytes) else str(data or "")
    try:
        body = json.loads(raw) if raw else {}
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    logger.debug(f"POST {url} -> HTTP {response.status}")
    return TokenResponse(status=int(response.status), body=body, raw=raw)
