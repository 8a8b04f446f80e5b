"""
Chain Session Manager — runs paged chains for individual users.

Each user has at most one live session: a (chain, context, outstanding
message) triple. Inbound interactions flow through here:

  InteractionEvent
    → acknowledge on the platform
    → look up the user's session (none: stale event, ignored)
    → component not on the current page: ignored
    → HandlerRegistry.dispatch(component_id, ctx)
    → apply requested page delta, clamp
    → context complete?  terminal edit/send, session removed
      otherwise          render current page, edit-in-place or resend

Message reconciliation keeps a single prompt per session. An existing
message in the same channel is edited; if the edit fails (message
deleted, inaccessible) a fresh message is sent and becomes the new
anchor. The remembered (channel, message) pair always points at
whichever send/edit last succeeded.

Concurrency: the session map is guarded by a lock and safe to touch from
any thread. Two interactions for the same user may interleave at await
points and the last write wins; enable `serialize_interactions` to run
them one at a time per session. The done handler is claimed under the
map lock, so persistence and completion run once per session even when
`done` is pressed twice. Sessions have no expiry unless
`idle_ttl_seconds` is set.
"""
from __future__ import annotations

import asyncio
import threading
import time
import structlog
from enum import Enum
from typing import Any, Callable, Optional

from chains.chain import PagedChain
from chains.registry import HandlerRegistry
from chains.renderer import PageRenderer
from channels.base import ChatPlatform, MessageEditError
from config.settings import SessionConfig, Settings, get_settings
from context.component_context import (
    ADVANCE, INTERACTION_COMPONENT, INTERACTION_VALUE, MESSAGE_CHANNEL, MESSAGE_ID,
    PAGE_INDEX, TOTAL_PAGES, ComponentContext, selected_key,
)
from models.schemas import InteractionEvent, MessageRef, RenderedPayload

logger = structlog.get_logger()

_ABSENT = object()


class InteractionOutcome(str, Enum):
    STALE = "stale"                       # no session for the user
    NOT_ON_PAGE = "not_on_page"           # component belongs to another page
    UNHANDLED = "unhandled"               # no handler registered
    HANDLER_FAILED = "handler_failed"     # handler raised; page unchanged
    RENDERED = "rendered"
    COMPLETED = "completed"


# ──────────────────────────────────────────────────────
#  Session
# ──────────────────────────────────────────────────────

class ChainSession:
    """Live pairing of a user, a chain, its context and the outstanding message."""

    def __init__(self, chain: PagedChain, context: ComponentContext, now: float):
        self.chain = chain
        self.context = context
        self.created_at = now
        self.last_activity = now
        self.lock = asyncio.Lock()
        self.finishing = False            # a done handler is running or has run

    @property
    def user_id(self) -> str:
        return self.context.user_id

    @property
    def message(self) -> Optional[MessageRef]:
        channel_id = self.context.get_string(MESSAGE_CHANNEL)
        message_id = self.context.get_string(MESSAGE_ID)
        if not channel_id or not message_id:
            return None
        return MessageRef(channel_id=channel_id, message_id=message_id)

    def anchor(self, ref: MessageRef) -> None:
        self.context.put(MESSAGE_CHANNEL, ref.channel_id)
        self.context.put(MESSAGE_ID, ref.message_id)

    @property
    def page_index(self) -> int:
        return self.context.page_index

    def is_idle(self, now: float, ttl: float) -> bool:
        return ttl > 0 and now - self.last_activity > ttl

    def __repr__(self):
        return (f"<ChainSession user={self.user_id} chain={self.chain.chain_id!r} "
                f"page={self.page_index}/{self.chain.total_pages()}>")


# ──────────────────────────────────────────────────────
#  Session Manager
# ──────────────────────────────────────────────────────

class SessionManager:
    """
    Owns user → session. Dispatches interactions, advances or completes
    chains and keeps each session's single prompt message up to date.
    """

    def __init__(
        self,
        platform: ChatPlatform,
        registry: HandlerRegistry = None,
        renderer: PageRenderer = None,
        config: SessionConfig = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.platform = platform
        self.registry = registry if registry is not None else HandlerRegistry()
        self.renderer = renderer if renderer is not None else PageRenderer()
        self.config = config if config is not None else SessionConfig()
        self._clock = clock
        self._sessions: dict[str, ChainSession] = {}
        self._lock = threading.Lock()
        self._eviction_task: Optional[asyncio.Task] = None

    @classmethod
    def from_settings(
        cls,
        platform: ChatPlatform,
        settings: Settings = None,
        registry: HandlerRegistry = None,
    ) -> "SessionManager":
        """Build a manager configured from the `session` section of the settings."""
        settings = settings if settings is not None else get_settings()
        return cls(platform, registry=registry, config=settings.session)

    # ── Session map ───────────────────────────────────

    def get_session(self, user_id: str) -> Optional[ChainSession]:
        """Return the user's live session; idle sessions past the TTL are evicted."""
        now = self._clock()
        with self._lock:
            session = self._sessions.get(user_id)
            if session and session.is_idle(now, self.config.idle_ttl_seconds):
                del self._sessions[user_id]
                expired = session
            else:
                return session
        logger.info("chain_session_expired",
                    user_id=user_id, chain_id=expired.chain.chain_id)
        return None

    def has_session(self, user_id: str) -> bool:
        return self.get_session(user_id) is not None

    @property
    def active_count(self) -> int:
        with self._lock:
            return len(self._sessions)

    def _install(self, session: ChainSession) -> Optional[ChainSession]:
        with self._lock:
            previous = self._sessions.get(session.user_id)
            self._sessions[session.user_id] = session
        return previous

    def _release(self, session: ChainSession) -> bool:
        """Remove `session` if it is still the user's live one. True if removed."""
        with self._lock:
            if self._sessions.get(session.user_id) is session:
                del self._sessions[session.user_id]
                return True
        return False

    def end(self, user_id: str) -> bool:
        """Drop a user's session without rendering anything."""
        with self._lock:
            session = self._sessions.pop(user_id, None)
        if session:
            logger.info("chain_session_ended", user_id=user_id, chain_id=session.chain.chain_id)
        return session is not None

    # ── Start ─────────────────────────────────────────

    async def start(
        self,
        user_id: str,
        chain: PagedChain,
        channel_id: str = None,
        seed: dict[str, Any] = None,
    ) -> ChainSession:
        """
        Start `chain` for `user_id`, replacing any session the user already has,
        and send the first page. Without `channel_id` the user's private
        channel is used.
        """
        self.registry.register_all(dict(chain.handlers))

        ctx = ComponentContext(user_id, seed)
        ctx.put(PAGE_INDEX, 0)
        ctx.put(TOTAL_PAGES, chain.total_pages())
        session = ChainSession(chain, ctx, self._clock())

        previous = self._install(session)
        if previous:
            logger.info("chain_session_replaced",
                        user_id=user_id,
                        old_chain_id=previous.chain.chain_id,
                        chain_id=chain.chain_id)
        logger.info("chain_session_started",
                    user_id=user_id, chain_id=chain.chain_id, pages=chain.total_pages())

        if not channel_id:
            channel_id = await self._private_channel(user_id)
            if not channel_id:
                return session

        await self._send_fresh(session, channel_id, self._render_current(session))
        return session

    # ── Interactions ──────────────────────────────────

    async def on_interaction(self, event: InteractionEvent) -> InteractionOutcome:
        """The single entry point for inbound component interactions."""
        try:
            await self.platform.acknowledge(event)
        except Exception as e:
            logger.warning("interaction_ack_failed",
                           component_id=event.component_id, user_id=event.user_id, error=str(e))

        session = self.get_session(event.user_id)
        if session is None:
            logger.debug("stale_interaction",
                         component_id=event.component_id, user_id=event.user_id)
            return InteractionOutcome.STALE

        if self.config.serialize_interactions:
            async with session.lock:
                return await self._process(session, event)
        return await self._process(session, event)

    async def handle(
        self,
        component_id: str,
        user_id: str,
        channel_id: str = "",
        values: list[str] = None,
    ) -> InteractionOutcome:
        return await self.on_interaction(InteractionEvent(
            component_id=component_id, user_id=user_id,
            channel_id=channel_id, values=values or [],
        ))

    async def _process(self, session: ChainSession, event: InteractionEvent) -> InteractionOutcome:
        ctx = session.context
        chain = session.chain

        # Another interaction already completed this run
        if ctx.is_complete() or self.get_session(session.user_id) is not session:
            return InteractionOutcome.STALE

        page = chain.page(ctx.page_index)
        if not page.has_component(event.component_id):
            logger.info("component_not_on_page",
                        component_id=event.component_id,
                        user_id=session.user_id,
                        chain_id=chain.chain_id,
                        page_index=ctx.page_index)
            return InteractionOutcome.NOT_ON_PAGE

        # The done handler persists results, so it runs at most once per session
        finishing = self._is_done_component(chain, event.component_id)
        if finishing and not self._claim_finish(session):
            logger.info("duplicate_done_ignored",
                        user_id=session.user_id, chain_id=chain.chain_id)
            return InteractionOutcome.STALE

        session.last_activity = self._clock()
        start_index = ctx.page_index
        restore = self._interaction_keys(ctx, event.component_id)
        ctx.put(INTERACTION_COMPONENT, event.component_id)
        if event.is_selection:
            ctx.put(INTERACTION_VALUE, event.value)
            ctx.put(selected_key(event.component_id), event.value)
        else:
            ctx.remove(INTERACTION_VALUE)

        outcome = InteractionOutcome.RENDERED
        if not self.registry.has(event.component_id):
            logger.warning("unhandled_component",
                           component_id=event.component_id, user_id=session.user_id)
            outcome = InteractionOutcome.UNHANDLED
        else:
            try:
                await self.registry.invoke(event.component_id, ctx)
            except Exception as e:
                logger.error("handler_failed",
                             component_id=event.component_id,
                             user_id=session.user_id,
                             chain_id=chain.chain_id,
                             error=str(e),
                             exc_info=True)
                outcome = InteractionOutcome.HANDLER_FAILED

        advance = ctx.remove(ADVANCE)
        if outcome is InteractionOutcome.HANDLER_FAILED:
            ctx.put(PAGE_INDEX, start_index)
            for key, value in restore.items():
                if value is _ABSENT:
                    ctx.remove(key)
                else:
                    ctx.put(key, value)
        elif advance:
            ctx.put(PAGE_INDEX, ctx.page_index + int(advance))

        if ctx.is_complete():
            await self._finalize(session, event.channel_id)
            return InteractionOutcome.COMPLETED

        if finishing:
            session.finishing = False

        ctx.put(PAGE_INDEX, chain.clamp_index(ctx.page_index))
        await self._reconcile(session, event.channel_id, self._render_current(session))
        return outcome

    @staticmethod
    def _interaction_keys(ctx: ComponentContext, component_id: str) -> dict[str, Any]:
        keys = (INTERACTION_COMPONENT, INTERACTION_VALUE, selected_key(component_id))
        return {k: ctx.get(k) if ctx.has(k) else _ABSENT for k in keys}

    # ── Completion ────────────────────────────────────

    @staticmethod
    def _is_done_component(chain: PagedChain, component_id: str) -> bool:
        return bool(chain.navigation) and component_id == chain.navigation[2]

    def _claim_finish(self, session: ChainSession) -> bool:
        with self._lock:
            if session.finishing:
                return False
            session.finishing = True
            return True

    async def _finalize(self, session: ChainSession, channel_id: str) -> None:
        # Only the interaction that removes the session renders the terminal state
        if not self._release(session):
            return
        payload = self.renderer.render_completion(
            session.chain.chain_id, self.config.completion_text)
        ref = await self._reconcile(session, channel_id, payload)
        if ref:
            await self._forget(ref)
        logger.info("chain_completed",
                    user_id=session.user_id, chain_id=session.chain.chain_id)

    # ── Rendering & message reconciliation ────────────

    def _render_current(self, session: ChainSession) -> RenderedPayload:
        chain = session.chain
        index = chain.clamp_index(session.page_index)
        return self.renderer.render(
            chain.chain_id, index, chain.total_pages(), chain.page(index), session.context)

    def render(self, user_id: str) -> Optional[RenderedPayload]:
        """Render a user's current page without sending it."""
        session = self.get_session(user_id)
        return self._render_current(session) if session else None

    async def _reconcile(
        self, session: ChainSession, channel_id: str, payload: RenderedPayload,
    ) -> Optional[MessageRef]:
        ref = session.message
        if ref and (not channel_id or ref.channel_id == channel_id):
            try:
                edited = await self.platform.edit_message(ref, payload)
            except MessageEditError as e:
                logger.warning("message_edit_rejected",
                               user_id=session.user_id, message_id=ref.message_id, error=str(e))
                edited = False
            except Exception as e:
                logger.warning("message_edit_error",
                               user_id=session.user_id, message_id=ref.message_id, error=str(e))
                edited = False
            if edited:
                return ref
            logger.info("message_edit_failed_resending",
                        user_id=session.user_id, message_id=ref.message_id)

        target = channel_id or (ref.channel_id if ref else None)
        if not target:
            target = await self._private_channel(session.user_id)
            if not target:
                return None
        return await self._send_fresh(session, target, payload)

    async def _send_fresh(
        self, session: ChainSession, channel_id: str, payload: RenderedPayload,
    ) -> Optional[MessageRef]:
        try:
            ref = await self.platform.send_message(channel_id, payload)
        except Exception as e:
            logger.error("message_send_failed",
                         user_id=session.user_id,
                         channel_id=channel_id,
                         chain_id=session.chain.chain_id,
                         error=str(e))
            return None
        previous = session.message
        session.anchor(ref)
        if previous and previous != ref:
            await self._forget(previous)
        return ref

    async def _forget(self, ref: MessageRef) -> None:
        try:
            await self.platform.forget_message(ref)
        except Exception as e:
            logger.debug("message_forget_failed", message_id=ref.message_id, error=str(e))

    async def _private_channel(self, user_id: str) -> Optional[str]:
        try:
            return await self.platform.open_private_channel(user_id)
        except Exception as e:
            logger.error("private_channel_unavailable", user_id=user_id, error=str(e))
            return None

    # ── Idle eviction ─────────────────────────────────

    def evict_idle(self) -> int:
        """Remove sessions idle longer than the TTL. Returns the number evicted."""
        ttl = self.config.idle_ttl_seconds
        if ttl <= 0:
            return 0
        now = self._clock()
        with self._lock:
            expired = [uid for uid, s in self._sessions.items() if s.is_idle(now, ttl)]
            for uid in expired:
                del self._sessions[uid]
        if expired:
            logger.info("chain_sessions_evicted", count=len(expired))
        return len(expired)

    async def start_eviction_loop(self) -> None:
        if self.config.idle_ttl_seconds <= 0 or self._eviction_task:
            return
        self._eviction_task = asyncio.create_task(self._eviction_loop(), name="chain_session_eviction")
        logger.info("chain_eviction_started", ttl_s=self.config.idle_ttl_seconds)

    async def stop_eviction_loop(self) -> None:
        task, self._eviction_task = self._eviction_task, None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _eviction_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.eviction_interval_seconds)
            try:
                self.evict_idle()
            except Exception as e:
                logger.error("chain_eviction_error", error=str(e))

    # ── Shutdown ──────────────────────────────────────

    async def shutdown(self) -> None:
        """Drop every session and clear the handler registry."""
        await self.stop_eviction_loop()
        with self._lock:
            count = len(self._sessions)
            self._sessions.clear()
        self.registry.clear()
        logger.info("session_manager_shutdown", sessions=count)
