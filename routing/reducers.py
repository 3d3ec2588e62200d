"""
Reducer variants — the execution units of a route.

Items passed to `Router.use()` are classified once, at registration:

    "path" / "/*"         → PathSpec   (action path matcher)
    re.compile(...)       → Pattern    (free-text matcher)
    callable              → Handler    (sync or async function)
    [item, item, ...]     → Group      (OR alternatives)
    object with .reduce   → SubRouter  (nested router)

Dispatch then works with these objects only; nothing is re-inspected per
request.
"""
from __future__ import annotations

import inspect
import re
from dataclasses import dataclass
from typing import Any, Callable, Optional

from routing.paths import compile_path, join_location, normalize
from utils.tokenizer import tokenize


# ──────────────────────────────────────────────────────────────
#  Signals
# ──────────────────────────────────────────────────────────────

CONTINUE = True
BREAK = False
END = None


@dataclass(frozen=True)
class ExitSignal:
    """Leave the current scope through the exit point `name`."""
    name: str
    data: Any = None

    def __post_init__(self):
        if self.data is None:
            object.__setattr__(self, "data", {})


def coerce_result(result: Any) -> Any:
    """
    Map a raw reducer return value onto a signal. A bare string is an exit
    shorthand; anything that is not a signal ends processing.
    """
    if result is CONTINUE or result is BREAK or isinstance(result, ExitSignal):
        return result
    if isinstance(result, str) and result:
        return ExitSignal(result, {})
    return END


async def settle(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


# ──────────────────────────────────────────────────────────────
#  Dispatch context
# ──────────────────────────────────────────────────────────────

@dataclass
class DispatchContext:
    req: Any
    res: Any
    post_back: Any                  # already relative to `location`
    location: str                   # absolute location of the router
    action: Optional[str]           # action relative to `location`
    route_location: str             # location a nested router is mounted at
    route_path: str = "/*"


# ──────────────────────────────────────────────────────────────
#  Variants
# ──────────────────────────────────────────────────────────────

class Reducer:
    emits_action = False

    async def run(self, ctx: DispatchContext) -> Any:
        raise NotImplementedError


class PathSpec(Reducer):
    def __init__(self, path: str, prefix: bool = False):
        self.path = normalize(path)
        self.prefix = prefix
        self._matches = compile_path(self.path, prefix=prefix)

    async def run(self, ctx: DispatchContext) -> Any:
        if not self._matches(ctx.action):
            return BREAK
        # the alternative that matched decides where a nested router is mounted
        ctx.route_path = self.path
        ctx.route_location = join_location(ctx.location, self.path)
        return CONTINUE

    def __repr__(self):
        return f"<PathSpec {self.path}{' prefix' if self.prefix else ''}>"


class Pattern(Reducer):
    """Matches the tokenized text of a message, not the action path."""

    def __init__(self, pattern: re.Pattern):
        self.pattern = pattern

    async def run(self, ctx: DispatchContext) -> Any:
        text = ctx.req.text() if ctx.req.is_message else ""
        if not text:
            return BREAK
        return CONTINUE if self.pattern.search(tokenize(text)) else BREAK

    def __repr__(self):
        return f"<Pattern {self.pattern.pattern}>"


class Handler(Reducer):
    emits_action = True

    def __init__(self, fn: Callable):
        self.fn = fn

    async def run(self, ctx: DispatchContext) -> Any:
        return await settle(self.fn(ctx.req, ctx.res, ctx.post_back))

    def __repr__(self):
        return f"<Handler {getattr(self.fn, '__name__', self.fn)!r}>"


class Group(Reducer):
    """OR alternatives; evaluated by the router that owns the route."""

    def __init__(self, items: list[Reducer], runner: Callable):
        self.items = items
        self._runner = runner

    async def run(self, ctx: DispatchContext) -> Any:
        return await self._runner(self.items, ctx, True)

    def __repr__(self):
        return f"<Group {self.items!r}>"


class SubRouter(Reducer):
    def __init__(self, router: Any):
        self.router = router

    async def run(self, ctx: DispatchContext) -> Any:
        return await settle(
            self.router.reduce(ctx.req, ctx.res, ctx.post_back, ctx.route_location)
        )

    def __repr__(self):
        return f"<SubRouter {self.router!r}>"


def is_router_like(item: Any) -> bool:
    return (
        not inspect.isfunction(item)
        and not inspect.ismethod(item)
        and callable(getattr(item, "reduce", None))
    )


def first_path(items: list[Any]) -> Optional[str]:
    """The first string path among the items, searching OR-groups too."""
    for item in items:
        if isinstance(item, str):
            return item
        if isinstance(item, (list, tuple)):
            found = first_path(list(item))
            if found is not None:
                return found
    return None


def is_regex(item: Any) -> bool:
    return isinstance(item, re.Pattern)
