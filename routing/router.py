"""
Router — the dispatch engine.

A router holds an ordered list of routes. Each route is a sequence of
reducers and a map of named exit points:

    bot = Router()
    bot.use("/start", greet)
    bot.use("/music", music_router).on_exit("back", go_home)
    bot.use(re.compile(r"^hello$"), say_hello)
    bot.use(fallback)

Reducer results drive the walk:

    CONTINUE     → next reducer of the same route (after the last one: next route)
    BREAK        → this route does not match, try the next route
    exit(n, d)   → resolved against the route's exit points, else bubbles up
    None / other → END, stop everything

`reduce()` resolves to END, an unhandled ExitSignal, or CONTINUE when no
route consumed the request.
"""
from __future__ import annotations

from typing import Any, Callable, Optional

import structlog

from routing.paths import WILDCARD, join_location, normalize, relative_action
from routing.postback import RelativePostBack, ensure_post_back
from routing.reducers import (
    BREAK, CONTINUE, END, DispatchContext, ExitSignal, Group, Handler, PathSpec,
    Pattern, Reducer, SubRouter, coerce_result, first_path, is_regex,
    is_router_like, settle,
)
from routing.wrapper import ReducerWrapper

logger = structlog.get_logger()

ExitHandler = Callable[..., Any]


class Route:
    """One `use()` registration: reducers plus exit points."""

    def __init__(self, path: str, reducers: list[Reducer], is_router: bool):
        self.path = path
        self.reducers = reducers
        self.is_router = is_router
        self.exit_points: dict[str, ExitHandler] = {}

    def __repr__(self):
        return f"<Route {self.path} reducers={len(self.reducers)} exits={list(self.exit_points)}>"


class RouteRegistration:
    """Returned by `use()`; attaches exit points to the route just created."""

    def __init__(self, route: Route):
        self._route = route

    def on_exit(self, name: str, handler: ExitHandler) -> RouteRegistration:
        self._route.exit_points[name] = handler
        return self


class Router(ReducerWrapper):

    CONTINUE = CONTINUE
    BREAK = BREAK
    END = END

    def __init__(self):
        super().__init__()
        self._routes: list[Route] = []

    @staticmethod
    def exit(name: str, data: Any = None) -> ExitSignal:
        return ExitSignal(name, data or {})

    @property
    def routes(self) -> list[Route]:
        return list(self._routes)

    # ── Registration ──────────────────────────────────────────

    def use(self, *items: Any) -> RouteRegistration:
        if not items:
            raise ValueError("use() needs at least one reducer")

        is_router = any(is_router_like(item) for item in items)
        path = first_path(list(items))
        route_path = normalize(path) if path is not None else WILDCARD

        reducers = self.create_reducers(list(items), prefix=is_router)
        route = Route(route_path, reducers, is_router)
        self._routes.append(route)

        logger.debug("route_registered", path=route_path, reducers=len(reducers),
                     nested=is_router)
        return RouteRegistration(route)

    def create_reducers(self, items: list[Any], prefix: bool = False) -> list[Reducer]:
        reducers = []
        for item in items:
            reducers.append(self._classify(item, prefix))
        return reducers

    def _classify(self, item: Any, prefix: bool) -> Reducer:
        if isinstance(item, Reducer):
            return item
        if isinstance(item, str):
            return PathSpec(item, prefix=prefix)
        if is_regex(item):
            return Pattern(item)
        if isinstance(item, (list, tuple)):
            return Group(self.create_reducers(list(item), prefix), self._run_sequence)
        if is_router_like(item):
            if hasattr(item, "on"):
                item.on("action", self._forward_action)
            return SubRouter(item)
        if callable(item):
            return Handler(item)
        raise TypeError(f"Unsupported reducer: {item!r}")

    def _forward_action(self, *args: Any) -> None:
        self.emit("action", *args)

    # ── Dispatch ──────────────────────────────────────────────

    async def reduce(self, req, res, post_back=None, location: str = "/") -> Any:
        location = normalize(location)
        action = relative_action(req.action(), location)
        relative_post_back = RelativePostBack(ensure_post_back(post_back), location)

        for route in self._routes:
            result = await self._reduce_route(route, req, res, relative_post_back,
                                              location, action)
            if isinstance(result, ExitSignal):
                return result
            if result is CONTINUE or result is BREAK:
                continue
            return END

        return CONTINUE

    async def process_reducers(self, reducers: list[Any], req, res, post_back=None,
                               location: str = "/", action: Optional[str] = None) -> Any:
        """
        Run a pre-built reducer list as one unnamed route without exit points.
        `action` is the absolute action; by default the request's own.
        """
        location = normalize(location)
        if action is None:
            action = req.action()
        built = [r if isinstance(r, Reducer) else self._classify(r, False) for r in reducers]
        route = Route(WILDCARD, built, False)
        relative_post_back = RelativePostBack(ensure_post_back(post_back), location)
        return await self._reduce_route(route, req, res, relative_post_back, location,
                                        relative_action(action, location))

    async def _reduce_route(self, route: Route, req, res, post_back, location: str,
                            action: Optional[str]) -> Any:
        ctx = DispatchContext(
            req=req,
            res=res,
            post_back=post_back,
            location=location,
            action=action,
            route_location=join_location(location, route.path),
            route_path=route.path,
        )
        result = await self._run_sequence(route.reducers, ctx, False)
        if isinstance(result, ExitSignal):
            result = await self._resolve_exit(route, result, ctx)
        return result

    async def _run_sequence(self, reducers: list[Reducer], ctx: DispatchContext,
                            is_or: bool) -> Any:
        for reducer in reducers:
            if hasattr(ctx.res, "set_path"):
                ctx.res.set_path(ctx.location, ctx.route_path)

            result = coerce_result(await reducer.run(ctx))

            if reducer.emits_action and result is not CONTINUE and result is not BREAK:
                self._emit_route_action(ctx)

            if is_or:
                if result is BREAK:
                    continue
                if isinstance(result, ExitSignal):
                    return result
                return CONTINUE

            if result is CONTINUE:
                continue
            if result is BREAK:
                return BREAK
            if isinstance(result, ExitSignal):
                return result
            return END

        return BREAK if is_or else CONTINUE

    async def _resolve_exit(self, route: Route, signal: ExitSignal, ctx: DispatchContext) -> Any:
        result: Any = signal
        visited: set[str] = set()

        while isinstance(result, ExitSignal) and result.name in route.exit_points:
            if result.name in visited:
                logger.warning("exit_point_cycle", exit_name=result.name, route=route.path)
                break
            visited.add(result.name)
            handler = route.exit_points[result.name]
            if hasattr(ctx.res, "set_path"):
                ctx.res.set_path(ctx.location, ctx.route_path)
            result = coerce_result(
                await settle(handler(result.data, ctx.req, ctx.res, ctx.post_back))
            )

        return result

    def _emit_route_action(self, ctx: DispatchContext) -> None:
        if ctx.location == "/":
            path = ctx.route_path
        else:
            path = ctx.location if ctx.route_path == "/" else f"{ctx.location}{ctx.route_path}"
        self.emit("action", ctx.req.sender_id, path, ctx.req.text(), ctx.req)

    def __repr__(self):
        return f"<Router routes={len(self._routes)}>"
