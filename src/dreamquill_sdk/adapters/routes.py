"""REST-shaped request -> desktop IPC command routing.

Every plain request the services issue has exactly one entry here. Numeric
path segments are captured by the pattern and passed as ``int`` arguments;
bodies are forwarded as ``payload`` unless the command takes named fields.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from ..errors import UnsupportedRouteError
from ..transport import RequestSpec

ArgsBuilder = Callable[[re.Match[str], RequestSpec[Any]], dict[str, Any]]


def _int_or_none(value: Any) -> int | None:
    # Query values may arrive as ints or as numeric strings
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.isdigit():
        return int(value)
    return None


def _no_args(match: re.Match[str], spec: RequestSpec[Any]) -> dict[str, Any]:
    return {}


def _payload(match: re.Match[str], spec: RequestSpec[Any]) -> dict[str, Any]:
    return {"payload": spec.body}


def _id(match: re.Match[str], spec: RequestSpec[Any]) -> dict[str, Any]:
    return {"id": int(match["id"])}


def _id_payload(match: re.Match[str], spec: RequestSpec[Any]) -> dict[str, Any]:
    return {"id": int(match["id"]), "payload": spec.body}


def _chat_id(match: re.Match[str], spec: RequestSpec[Any]) -> dict[str, Any]:
    return {"chat_id": int(match["id"])}


def _chat_id_payload(match: re.Match[str], spec: RequestSpec[Any]) -> dict[str, Any]:
    return {"chat_id": int(match["id"]), "payload": spec.body}


def _rename(match: re.Match[str], spec: RequestSpec[Any]) -> dict[str, Any]:
    body = spec.body if isinstance(spec.body, dict) else {}
    return {"chat_id": int(match["id"]), "title": body.get("title") or ""}


def _provider_query(match: re.Match[str], spec: RequestSpec[Any]) -> dict[str, Any]:
    return {"provider_id": _int_or_none((spec.query or {}).get("provider_id"))}


@dataclass(frozen=True)
class Route:
    """One routing table entry."""

    method: str
    pattern: re.Pattern[str]
    command: str
    args: ArgsBuilder = _no_args


@dataclass(frozen=True)
class ResolvedRoute:
    """A request matched to its IPC command."""

    command: str
    args: dict[str, Any]


def _route(method: str, path: str, command: str, args: ArgsBuilder = _no_args) -> Route:
    pattern = re.compile("^" + path.replace("{id}", r"(?P<id>\d+)") + "$")
    return Route(method=method, pattern=pattern, command=command, args=args)


ROUTES: tuple[Route, ...] = (
    # Providers
    _route("GET", "/providers", "dq_get_config"),
    _route("POST", "/providers", "dq_create_provider", _payload),
    _route("PUT", "/providers/{id}", "dq_update_provider", _id_payload),
    _route("DELETE", "/providers/{id}", "dq_delete_provider", _id),
    _route("POST", "/providers/{id}/select", "dq_select_provider", _id),
    # Models and health
    _route("GET", "/models", "dq_list_models", _provider_query),
    _route("GET", "/health", "dq_health_check", _provider_query),
    _route("POST", "/health/preview", "dq_health_check_preview", _payload),
    # Chats
    _route("GET", "/chats", "dq_list_chats"),
    _route("GET", "/chats/{id}/messages", "dq_get_chat_messages", _chat_id),
    _route("DELETE", "/chats/{id}", "dq_delete_chat", _chat_id),
    _route("PUT", "/chats/{id}", "dq_rename_chat", _rename),
    _route("POST", "/chats/{id}/branch", "dq_branch_chat", _chat_id_payload),
)


def resolve_route(spec: RequestSpec[Any], routes: tuple[Route, ...] = ROUTES) -> ResolvedRoute:
    """Map a request to its IPC command and arguments.

    Raises:
        UnsupportedRouteError: If no route matches method and path
    """
    for route in routes:
        if route.method != spec.method:
            continue
        match = route.pattern.match(spec.path)
        if match is not None:
            return ResolvedRoute(command=route.command, args=route.args(match, spec))
    raise UnsupportedRouteError(spec.method, spec.path)
