"""
Handler Registry — process-wide component id → callback dispatch table.

Every interactive component (button, dropdown) is identified by a string
id. When a user interacts with it, the session manager dispatches the id
here with the session's ComponentContext.

The namespace is flat: handlers are not scoped by chain or session.
Registering an id that is already present replaces the earlier handler
(last write wins), so two chains that are active at the same time must
use distinct component ids unless they intend to share a handler.
Navigation ids (`back`, `next`, `done`) are the deliberate exception:
every chain wires them the same way.

Handlers may be plain functions or coroutine functions. A handler that
raises is logged and treated as a navigation no-op; the exception never
escapes `dispatch`.
"""
from __future__ import annotations

import inspect
import threading
import structlog
from typing import Any, Awaitable, Callable, Optional, Union

from context.component_context import ComponentContext

logger = structlog.get_logger()

Handler = Callable[[ComponentContext], Union[None, Awaitable[None]]]


class UnknownComponentError(KeyError):
    """No handler is registered for a component id."""


class HandlerRegistry:
    """Thread-safe id → handler table with an explicit lifecycle."""

    def __init__(self):
        self._handlers: dict[str, Handler] = {}
        self._lock = threading.RLock()

    # ── Registration ──────────────────────────────────

    def register(self, component_id: str, handler: Handler) -> None:
        with self._lock:
            replaced = component_id in self._handlers
            self._handlers[component_id] = handler
        if replaced:
            logger.debug("handler_replaced", component_id=component_id)

    def register_all(self, handlers: dict[str, Handler]) -> None:
        with self._lock:
            self._handlers.update(handlers)
        logger.debug("handlers_registered", count=len(handlers))

    def unregister(self, component_id: str) -> bool:
        with self._lock:
            return self._handlers.pop(component_id, None) is not None

    def clear(self) -> None:
        with self._lock:
            count = len(self._handlers)
            self._handlers.clear()
        logger.info("handler_registry_cleared", count=count)

    # ── Lookup ────────────────────────────────────────

    def get(self, component_id: str) -> Optional[Handler]:
        with self._lock:
            return self._handlers.get(component_id)

    def has(self, component_id: str) -> bool:
        with self._lock:
            return component_id in self._handlers

    def ids(self) -> list[str]:
        with self._lock:
            return sorted(self._handlers)

    def __len__(self) -> int:
        with self._lock:
            return len(self._handlers)

    # ── Dispatch ──────────────────────────────────────

    async def invoke(self, component_id: str, ctx: ComponentContext) -> None:
        """
        Run the handler for `component_id`, letting its exceptions propagate.
        Raises UnknownComponentError if nothing is registered.
        """
        handler = self.get(component_id)
        if handler is None:
            raise UnknownComponentError(component_id)
        result: Any = handler(ctx)
        if inspect.isawaitable(result):
            await result

    async def dispatch(self, component_id: str, ctx: ComponentContext) -> bool:
        """
        Invoke the handler for `component_id` with `ctx`.
        Returns True if a handler was registered, whether or not it raised.
        """
        if not self.has(component_id):
            logger.warning("unhandled_component",
                           component_id=component_id, user_id=ctx.user_id)
            return False

        try:
            await self.invoke(component_id, ctx)
        except UnknownComponentError:
            # Unregistered between the check and the call
            return False
        except Exception as e:
            logger.error("handler_failed",
                         component_id=component_id,
                         user_id=ctx.user_id,
                         error=str(e),
                         exc_info=True)
        return True
