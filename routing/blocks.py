"""
Blocks — named code blocks and reusable routers.

A code block is a function that decides which of its named reducer lists
runs:

    blocks = Blocks()

    @blocks.code("age-check")
    async def age_check(req, res, post_back, run):
        if req.state.get("age", 0) >= 18:
            return await run("adult")
        return await run("minor")

    bot.use("/enter", blocks.custom_code("age-check", bot, {
        "adult": [lambda req, res, pb: res.text("Welcome")],
        "minor": [lambda req, res, pb: res.text("Sorry")],
    }))

Routers registered with `block()` can be mounted elsewhere by name with
`include()`.
"""
from __future__ import annotations

from typing import Any, Callable, Optional, Union

import structlog

from routing.reducers import settle

logger = structlog.get_logger()

CodeFn = Callable[..., Any]


class UnknownBlockError(LookupError):
    """A code block or router was requested by a name nobody registered."""

    def __init__(self, kind: str, name: str):
        self.kind = kind
        self.name = name
        super().__init__(f"Unknown {kind} '{name}'. Ensure it is registered before use.")


class Blocks:

    def __init__(self):
        self._codes: dict[str, CodeFn] = {}
        self._routers: dict[str, Any] = {}

    # ── Registration ──────────────────────────────────────

    def code(self, name: Union[str, Blocks], fn: Optional[CodeFn] = None) -> Any:
        """
        Register a code block. Usable as `code(name, fn)`, as a decorator
        `@code(name)`, or `code(other_blocks)` to take over another registry.
        """
        if isinstance(name, Blocks):
            self._codes.update(name._codes)
            self._routers.update(name._routers)
            return self
        if fn is None:
            def register(func: CodeFn) -> CodeFn:
                self.code(name, func)
                return func
            return register

        self._codes[name] = fn
        logger.debug("code_block_registered", name=name)
        return self

    def block(self, name: str, router: Any) -> Blocks:
        self._routers[name] = router
        return self

    def get_code(self, name: str) -> CodeFn:
        if name not in self._codes:
            raise UnknownBlockError("code block", name)
        return self._codes[name]

    def include(self, name: str) -> Any:
        """The router registered under `name`, ready to be passed to `use()`."""
        if name not in self._routers:
            raise UnknownBlockError("block", name)
        return self._routers[name]

    # ── Reducers ──────────────────────────────────────────

    def custom_code(self, name: str, router: Any,
                    items: Optional[dict[str, list[Any]]] = None) -> Callable:
        """
        Reducer calling the code block `name` as `fn(req, res, post_back, run)`.
        `await run(item)` dispatches the reducer list `items[item]` at the
        current location and returns its result; an unknown item gives None.
        """
        fn = self.get_code(name)
        built = {key: router.create_reducers(list(reducers))
                 for key, reducers in (items or {}).items()}

        async def run_code_block(req, res, post_back=None):
            async def run(item: str) -> Any:
                reducers = built.get(item)
                if reducers is None:
                    logger.warning("code_block_item_missing", block=name, item=item)
                    return None
                path, route_path = res.path, res.route_path
                try:
                    return await router.process_reducers(reducers, req, res, post_back, path)
                finally:
                    res.set_path(path, route_path)

            return await settle(fn(req, res, post_back, run))

        run_code_block.__name__ = f"code_{name}"
        return run_code_block
