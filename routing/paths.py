"""
Path utilities — route path normalization, matching and relative resolution.

Route paths are slash-delimited ("/music/play"). Besides literal segments a
path may hold `:name` (one segment) and `*` (anything, including nothing).
The single path "/*" is the distinguished match-anything path.

Actions handled by a nested router are relative to the router's location:

    relative_action("/music/play", "/music")   → "/play"
    make_absolute("play", "/music")             → "/music/play"
    make_absolute("../start", "/music")         → "/start"
"""
from __future__ import annotations

import posixpath
import re
from typing import Callable, Optional

WILDCARD = "/*"

ActionPredicate = Callable[[Optional[str]], bool]

_MULTI_SLASH = re.compile(r"/{2,}")


def normalize(path: str) -> str:
    """Leading slash, no trailing slash; the root stays "/"."""
    path = _MULTI_SLASH.sub("/", (path or "").strip())
    if not path.startswith("/"):
        path = f"/{path}"
    if len(path) > 1:
        path = path.rstrip("/") or "/"
    return path


def is_wildcard(path: str) -> bool:
    return normalize(path) == WILDCARD


def _segment_regex(path: str) -> str:
    parts = []
    for segment in path.strip("/").split("/"):
        if not segment:
            continue
        if segment == "*":
            parts.append(r"(?:/.*)?")
        elif segment.startswith(":"):
            parts.append(r"/[^/]+")
        else:
            parts.append("/" + re.escape(segment))
    return "".join(parts)


def compile_path(path_spec: str, prefix: bool = False) -> ActionPredicate:
    """
    Build a predicate over action paths.

    Exact match by default; with `prefix` the action may continue below the
    path at a segment boundary ("/music" accepts "/music/play", not
    "/musical"). "/*" accepts any non-null action.
    """
    path = normalize(path_spec)
    if path == WILDCARD:
        return lambda action: action is not None

    body = _segment_regex(path)
    if prefix:
        regex = re.compile(f"^{body}(?:/.*)?$" if body else r"^/.*$")
    else:
        regex = re.compile(f"^{body}/?$" if body else r"^/$")

    def matches(action: Optional[str]) -> bool:
        return action is not None and regex.match(action) is not None

    return matches


def make_absolute(action: Optional[str], location: str = "/") -> Optional[str]:
    """Resolve `action` against `location` unless it is empty or absolute."""
    if not action or action.startswith("/"):
        return action
    joined = posixpath.normpath(posixpath.join(normalize(location), action))
    return normalize(joined)


def join_location(location: str, route_path: str) -> str:
    """Location of a route mounted at `route_path` inside `location`."""
    route_path = normalize(route_path)
    if route_path.endswith(WILDCARD):
        route_path = route_path[: -len(WILDCARD)] or "/"
    if location in ("", "/"):
        return route_path
    if route_path == "/":
        return normalize(location)
    return normalize(f"{location}{route_path}")


def relative_action(action: Optional[str], location: str = "/") -> Optional[str]:
    """
    The part of an absolute action that lies inside `location`, or None when
    the action points elsewhere.
    """
    if not action:
        return None
    action = normalize(action)
    location = normalize(location)
    if location == "/":
        return action
    if action == location:
        return "/"
    if action.startswith(f"{location}/"):
        return action[len(location):]
    return None


def action_matches(route_action: str, query_path: str) -> bool:
    """
    Does an absolute route action correspond to a queried path?

    Absolute queries must match the whole action (patterns allowed), relative
    ones match the trailing segments: "deep" matches "/nested/deep".
    """
    if not route_action or not query_path:
        return False
    if query_path.startswith("/"):
        return compile_path(query_path)(normalize(route_action))
    query = query_path.strip("/")
    route_action = normalize(route_action)
    return route_action == f"/{query}" or route_action.endswith(f"/{query}")
