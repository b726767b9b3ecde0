"""HTTP routing for the box service: path matching, authentication and error mapping."""

from __future__ import annotations

import json
import logging
import os
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from lockbox import box_handlers, guardian_handlers
from lockbox.errors import AppError

log = logging.getLogger(__name__)

_CORS_HEADERS = {
    "access-control-allow-origin": "*",
    "access-control-allow-methods": "*",
    "access-control-allow-headers": "*",
}

_NOT_FOUND_TEXT = "The requested resource was not found"


@dataclass
class Response:
    """A status code, a body (a JSON-ready value or plain text) and headers."""

    status: int
    body: Any = None
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def is_client_error(self) -> bool:
        return 400 <= self.status < 500


@dataclass(frozen=True)
class _Endpoint:
    call: Callable[[Any, dict[str, str], str, Any], Any]
    takes_body: bool = False


@dataclass(frozen=True)
class _Route:
    template: str
    pattern: re.Pattern[str]
    endpoints: dict[str, _Endpoint]


def _compile(template: str) -> re.Pattern[str]:
    parts = []
    for segment in template.strip("/").split("/"):
        if segment.startswith(":"):
            parts.append(f"(?P<{segment[1:]}>[^/]+)")
        else:
            parts.append(re.escape(segment))
    return re.compile("^/" + "/".join(parts) + "$")


def _route_table() -> list[_Route]:
    bh, gh = box_handlers, guardian_handlers
    spec: dict[str, dict[str, _Endpoint]] = {
        "/boxes/owned": {
            "GET": _Endpoint(lambda s, p, u, b: bh.get_boxes(s, u)),
            "POST": _Endpoint(lambda s, p, u, b: bh.create_box(s, u, b), True),
        },
        "/boxes/owned/:id": {
            "GET": _Endpoint(lambda s, p, u, b: bh.get_box(s, p["id"], u)),
            "PATCH": _Endpoint(lambda s, p, u, b: bh.update_box(s, p["id"], u, b), True),
            "DELETE": _Endpoint(lambda s, p, u, b: bh.delete_box(s, p["id"], u)),
        },
        "/boxes/owned/:id/guardian": {
            "PATCH": _Endpoint(
                lambda s, p, u, b: bh.update_guardian(s, p["id"], u, b), True
            ),
        },
        "/boxes/owned/:id/guardian/:guardian_id": {
            "DELETE": _Endpoint(
                lambda s, p, u, b: bh.delete_guardian(s, p["id"], p["guardian_id"], u)
            ),
        },
        "/boxes/owned/:id/document": {
            "PATCH": _Endpoint(
                lambda s, p, u, b: bh.update_document(s, p["id"], u, b), True
            ),
        },
        "/boxes/owned/:id/document/:document_id": {
            "DELETE": _Endpoint(
                lambda s, p, u, b: bh.delete_document(s, p["id"], p["document_id"], u)
            ),
        },
        "/boxes/guardian": {
            "GET": _Endpoint(lambda s, p, u, b: gh.get_guardian_boxes(s, u)),
        },
        "/boxes/guardian/:id": {
            "GET": _Endpoint(lambda s, p, u, b: gh.get_guardian_box(s, p["id"], u)),
        },
        "/boxes/guardian/:id/request": {
            "PATCH": _Endpoint(
                lambda s, p, u, b: gh.request_unlock(s, p["id"], u, b), True
            ),
        },
        "/boxes/guardian/:id/respond": {
            "PATCH": _Endpoint(
                lambda s, p, u, b: gh.respond_to_unlock_request(s, p["id"], u, b), True
            ),
        },
        "/boxes/guardian/:id/invitation": {
            "PATCH": _Endpoint(
                lambda s, p, u, b: gh.respond_to_invitation(s, p["id"], u, b), True
            ),
        },
    }
    return [_Route(t, _compile(t), eps) for t, eps in spec.items()]


class Router:
    """Dispatches requests to the box and guardian handlers."""

    def __init__(self, store, prefix: str = "") -> None:
        self.store = store
        self.prefix = prefix.rstrip("/")
        self._routes = _route_table()
        log.info("Router configured with all routes under prefix: '%s'", self.prefix)

    def _respond(self, status: int, body: Any = None) -> Response:
        return Response(status, body, dict(_CORS_HEADERS))

    def _match(self, path: str) -> tuple[_Route, dict[str, str]] | None:
        if self.prefix:
            if not path.startswith(self.prefix + "/"):
                return None
            path = path[len(self.prefix):]
        for route in self._routes:
            found = route.pattern.match(path)
            if found:
                return route, found.groupdict()
        return None

    def handle(
        self,
        method: str,
        path: str,
        user_id: str | None = None,
        body: Any = None,
    ) -> Response:
        """Handle one request; ``user_id`` is the authenticated caller, if any."""
        method = method.upper()
        path = path.split("?", 1)[0]
        log.info("Router received request: method=%s, uri=%s", method, path)

        if method == "OPTIONS":
            return self._respond(200)

        matched = self._match(path)
        if matched is None:
            log.warning("No route matched for: %s %s", method, path)
            return self._respond(404, _NOT_FOUND_TEXT)
        route, params = matched

        if not user_id:
            return self._respond(401, {"error": "Missing or invalid authorization"})

        endpoint = route.endpoints.get(method)
        if endpoint is None:
            return self._respond(405)

        payload = None
        if endpoint.takes_body:
            if body is None:
                return self._respond(
                    415, "Expected request with `Content-Type: application/json`"
                )
            if isinstance(body, (str, bytes, bytearray)):
                try:
                    payload = json.loads(body)
                except ValueError as err:
                    return self._respond(
                        400, f"Failed to parse the request body as JSON: {err}"
                    )
            else:
                payload = body

        try:
            result = endpoint.call(self.store, params, user_id, payload)
        except AppError as err:
            status, error_body = err.to_response()
            return self._respond(status, error_body)
        except ValueError as err:
            return self._respond(
                422, f"Failed to deserialize the JSON body into the target type: {err}"
            )

        if isinstance(result, tuple):
            status, result_body = result
            return self._respond(status, result_body)
        return self._respond(200, result)


def create_router(store, prefix: str | None = None) -> Router:
    """Build a router; without a prefix, use ``/Prod`` unless REMOVE_BASE_PATH is true."""
    if prefix is None:
        remove = os.environ.get("REMOVE_BASE_PATH", "").lower() == "true"
        prefix = "" if remove else "/Prod"
    log.info("Using API route prefix: %s", prefix)
    return Router(store, prefix)