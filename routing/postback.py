"""
Postback emitters handed to reducers.

A reducer calls `post_back("action", {...})` to trigger a follow-up action
without new user input, or `resolve = post_back.wait()` to obtain a resolver
it can call later, e.g. after an external confirmation arrives.

Inside nested routers the emitter is wrapped so relative actions resolve
against the router's location before they reach the caller.
"""
from __future__ import annotations

from typing import Any, Callable, Optional

from routing.paths import make_absolute

Resolver = Callable[..., None]


class PostBack:
    """Base emitter; subclasses decide what an emitted postback does."""

    def __call__(self, action: Optional[str], data: dict[str, Any] = None) -> None:
        raise NotImplementedError

    def wait(self) -> Resolver:
        def resolve(action: Optional[str] = None, data: dict[str, Any] = None) -> None:
            self(action, data)
        return resolve


class FunctionPostBack(PostBack):
    """Adapts a plain callable (or nothing) to the emitter interface."""

    def __init__(self, fn: Optional[Callable[..., Any]] = None):
        self._fn = fn

    def __call__(self, action: Optional[str], data: dict[str, Any] = None) -> None:
        if self._fn is not None:
            self._fn(action, data or {})


class RelativePostBack(PostBack):
    """Makes actions absolute against `location` before delegating."""

    def __init__(self, parent: Any, location: str):
        self._parent = parent
        self.location = location

    def __call__(self, action: Optional[str], data: dict[str, Any] = None) -> None:
        self._parent(make_absolute(action, self.location), data or {})

    def wait(self) -> Resolver:
        parent_resolve = self._parent.wait()
        location = self.location

        def resolve(action: Optional[str] = None, data: dict[str, Any] = None) -> None:
            parent_resolve(make_absolute(action, location), data or {})
        return resolve


def ensure_post_back(post_back: Any) -> Any:
    if post_back is None:
        return FunctionPostBack()
    if callable(post_back) and hasattr(post_back, "wait"):
        return post_back
    if callable(post_back):
        return FunctionPostBack(post_back)
    raise TypeError(f"Unsupported postback emitter: {post_back!r}")
