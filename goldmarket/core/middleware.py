"""HTTP pipeline pieces that apply to every request.

`security_headers_middleware` stamps the fixed header set on each response.
`SanitizingRoute` HTML-encodes string input (query string, path params and
JSON body) before FastAPI parses it; routers opt in with
``APIRouter(route_class=SanitizingRoute)``.
"""

from __future__ import annotations

import json
import logging
from typing import Callable
from urllib.parse import parse_qsl, urlencode

from fastapi import Request, Response
from fastapi.routing import APIRoute

from .security import sanitize_data, security_headers

logger = logging.getLogger("goldmarket.security")

# Values that are never rendered as HTML and must reach the handler verbatim.
SANITIZE_SKIP_KEYS = frozenset(
    {"password", "currentPassword", "newPassword", "timezone", "_csrf"}
)


async def security_headers_middleware(request, call_next):  # type: ignore
    response = await call_next(request)
    for name, value in security_headers().items():
        response.headers[name] = value
    return response


def _sanitize_query(raw: bytes) -> bytes:
    pairs = parse_qsl(raw.decode("latin-1"), keep_blank_values=True)
    cleaned = [
        (key, value if key in SANITIZE_SKIP_KEYS else sanitize_data(value))
        for key, value in pairs
    ]
    return urlencode(cleaned).encode("latin-1")


class SanitizedRequest(Request):
    """Request whose JSON body is sanitized the first time it is read."""

    async def body(self) -> bytes:
        if not hasattr(self, "_sanitized_body"):
            raw = await super().body()
            self._sanitized_body = raw
            if raw and "application/json" in self.headers.get("content-type", ""):
                try:
                    payload = json.loads(raw)
                except ValueError:
                    pass  # malformed JSON is left for FastAPI to reject
                else:
                    self._sanitized_body = json.dumps(
                        sanitize_data(payload, SANITIZE_SKIP_KEYS), ensure_ascii=False
                    ).encode("utf-8")
            self._body = self._sanitized_body
        return self._sanitized_body


class SanitizingRoute(APIRoute):
    def get_route_handler(self) -> Callable:
        original_route_handler = super().get_route_handler()

        async def sanitizing_route_handler(request: Request) -> Response:
            scope = request.scope
            if scope.get("query_string"):
                scope["query_string"] = _sanitize_query(scope["query_string"])
            if scope.get("path_params"):
                scope["path_params"] = sanitize_data(dict(scope["path_params"]))
            return await original_route_handler(SanitizedRequest(scope, request.receive))

        return sanitizing_route_handler
