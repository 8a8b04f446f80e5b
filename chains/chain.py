"""
Paged Chain — an immutable, ordered wizard definition.

A chain is assembled once with `PagedChain.Builder` and then shared
read-only by every session that runs it:

    chain = (
        PagedChain.Builder()
        .chain_id("Setup Wizard")
        .add_page(welcome)
        .add_page(pick_server)
        .wire_navigation(ID_BACK, ID_NEXT, ID_DONE)
        .on("ServerPick", on_server_pick)
        .build()
    )

`build()` validates the whole definition and raises ChainBuildError
listing every problem found; a malformed chain never reaches dispatch.
Every component on a page needs a handler inside the chain, unless it
is declared with `shared(component_id)`: such ids are served by a handler
registered directly in the HandlerRegistry, and a missing one only shows
up at dispatch time as an unhandled interaction.
"""
from __future__ import annotations

import structlog
from types import MappingProxyType
from typing import Mapping, Optional

from chains.components import ID_BACK, ID_DONE, ID_NEXT
from chains.registry import Handler
from context.component_context import PAGE_INDEX, ComponentContext
from models.schemas import Page

logger = structlog.get_logger()


class ChainBuildError(ValueError):
    """Raised when a chain definition is invalid."""

    def __init__(self, chain_id: str, errors: list[str]):
        self.chain_id = chain_id
        self.errors = errors
        super().__init__(f"Invalid chain '{chain_id}': {'; '.join(errors)}")


def clamp(index: int, total: int) -> int:
    return max(0, min(index, total - 1))


# ──────────────────────────────────────────────────────────────
#  Navigation handlers
# ──────────────────────────────────────────────────────────────

def _go_back(ctx: ComponentContext) -> None:
    ctx.put(PAGE_INDEX, clamp(ctx.page_index - 1, max(ctx.total_pages, 1)))


def _go_next(ctx: ComponentContext) -> None:
    ctx.put(PAGE_INDEX, clamp(ctx.page_index + 1, max(ctx.total_pages, 1)))


def _finish(ctx: ComponentContext) -> None:
    ctx.complete()


# ──────────────────────────────────────────────────────────────
#  Chain
# ──────────────────────────────────────────────────────────────

class PagedChain:
    """Ordered pages plus the handlers for every component they contain."""

    def __init__(
        self,
        chain_id: str,
        pages: tuple[Page, ...],
        handlers: Mapping[str, Handler],
        navigation: Optional[tuple[str, str, str]] = None,
    ):
        self._chain_id = chain_id
        self._pages = pages
        self._handlers = MappingProxyType(dict(handlers))
        self._navigation = navigation

    @property
    def chain_id(self) -> str:
        return self._chain_id

    @property
    def pages(self) -> tuple[Page, ...]:
        return self._pages

    @property
    def handlers(self) -> Mapping[str, Handler]:
        return self._handlers

    @property
    def navigation(self) -> Optional[tuple[str, str, str]]:
        """(back_id, next_id, done_id) if navigation was wired."""
        return self._navigation

    def total_pages(self) -> int:
        return len(self._pages)

    def clamp_index(self, index: int) -> int:
        return clamp(index, len(self._pages))

    def page(self, index: int) -> Page:
        return self._pages[self.clamp_index(index)]

    def __repr__(self):
        return f"<PagedChain {self._chain_id!r} pages={len(self._pages)}>"

    # ── Builder ───────────────────────────────────────────────

    class Builder:
        """Single-use accumulator for a PagedChain. Not thread-shared."""

        def __init__(self):
            self._chain_id = ""
            self._pages: list[Page] = []
            self._handlers: dict[str, Handler] = {}
            self._navigation: Optional[tuple[str, str, str]] = None
            self._shared: set[str] = set()
            self._built = False

        def chain_id(self, chain_id: str) -> "PagedChain.Builder":
            self._chain_id = chain_id
            return self

        def add_page(self, page: Page) -> "PagedChain.Builder":
            self._pages.append(page)
            return self

        def wire_navigation(
            self,
            back_id: str = ID_BACK,
            next_id: str = ID_NEXT,
            done_id: str = ID_DONE,
        ) -> "PagedChain.Builder":
            self._navigation = (back_id, next_id, done_id)
            self._handlers[back_id] = _go_back
            self._handlers[next_id] = _go_next
            self._handlers[done_id] = _finish
            return self

        def on(self, component_id: str, handler: Handler) -> "PagedChain.Builder":
            self._handlers[component_id] = handler
            return self

        def shared(self, *component_ids: str) -> "PagedChain.Builder":
            """Declare ids whose handlers live in the shared registry, not in this chain."""
            self._shared.update(component_ids)
            return self

        def build(self) -> PagedChain:
            if self._built:
                raise RuntimeError("PagedChain.Builder is single-use")
            errors = self._validate()
            if errors:
                logger.error("invalid_chain", chain_id=self._chain_id, errors=errors)
                raise ChainBuildError(self._chain_id, errors)

            self._built = True
            chain = PagedChain(
                chain_id=self._chain_id,
                pages=tuple(self._pages),
                handlers=self._handlers,
                navigation=self._navigation,
            )
            logger.info("chain_built",
                        chain_id=chain.chain_id,
                        pages=chain.total_pages(),
                        handlers=len(self._handlers))
            return chain

        def _validate(self) -> list[str]:
            errors = []
            if not self._chain_id:
                errors.append("chain id is required")
            if not self._pages:
                errors.append("chain must have at least one page")

            nav_ids = set(self._navigation or ())
            if self._navigation and len(nav_ids) != 3:
                errors.append(f"navigation ids must be distinct, got {list(self._navigation)}")

            owner: dict[str, int] = {}
            for index, page in enumerate(self._pages):
                seen_on_page: set[str] = set()
                for component_id in page.component_ids():
                    if component_id in seen_on_page:
                        errors.append(f"page {index} uses component id '{component_id}' twice")
                        continue
                    seen_on_page.add(component_id)

                    if component_id not in self._handlers and component_id not in self._shared:
                        errors.append(f"page {index} component '{component_id}' has no handler")

                    # Navigation buttons may repeat across pages
                    if component_id in nav_ids:
                        continue
                    if component_id in owner:
                        errors.append(
                            f"component id '{component_id}' appears on pages "
                            f"{owner[component_id]} and {index}"
                        )
                    else:
                        owner[component_id] = index
            return errors
