"""Shared test fixtures for PageChain."""
import pytest

from models.schemas import Page, SelectOption
from context.component_context import ComponentContext
from chains.chain import PagedChain
from chains.components import Buttons, Dropdowns, ID_BACK, ID_NEXT, ID_DONE
from chains.registry import HandlerRegistry
from chains.renderer import PageRenderer
from chains.sessions import SessionManager
from channels.memory_adapter import InMemoryChatPlatform
from config.settings import SessionConfig

ID_DD_ITEM = "ItemPicker"
ID_DD_ROLE = "RolePicker"


def build_item_chain(done_handler=None) -> PagedChain:
    """Welcome → Pick-Item → Pick-Role → Confirm."""
    welcome = Page(title="Welcome", body="Press Next to begin.").with_button(3, Buttons.next())
    pick_item = (
        Page(title="Pick-Item")
        .with_button(0, Buttons.back())
        .with_button(3, Buttons.next())
        .with_dropdown(Dropdowns.dropdown(ID_DD_ITEM, "Pick an item", ["Server-1", "Server-7"]))
    )
    pick_role = (
        Page(title="Pick-Role")
        .with_button(0, Buttons.back())
        .with_button(3, Buttons.next())
        .with_dropdown(Dropdowns.dropdown(ID_DD_ROLE, "Pick a role", ["Mods", "Players"]))
    )
    confirm = (
        Page(title="Confirm")
        .with_button(0, Buttons.back())
        .with_button(3, Buttons.done())
    )

    def on_item(ctx: ComponentContext):
        ctx.put("item", ctx.interaction_value)
        ctx.advance(1)

    builder = (
        PagedChain.Builder()
        .chain_id("Item Wizard")
        .add_page(welcome)
        .add_page(pick_item)
        .add_page(pick_role)
        .add_page(confirm)
        .wire_navigation(ID_BACK, ID_NEXT, ID_DONE)
        .on(ID_DD_ITEM, on_item)
        .on(ID_DD_ROLE, lambda ctx: ctx.put("role", ctx.interaction_value))
    )
    if done_handler is not None:
        builder.on(ID_DONE, done_handler)
    return builder.build()


@pytest.fixture
def item_chain() -> PagedChain:
    return build_item_chain()


@pytest.fixture
def platform() -> InMemoryChatPlatform:
    return InMemoryChatPlatform()


@pytest.fixture
def registry() -> HandlerRegistry:
    return HandlerRegistry()


@pytest.fixture
def renderer() -> PageRenderer:
    return PageRenderer()


@pytest.fixture
def manager(platform, registry) -> SessionManager:
    return SessionManager(platform, registry=registry, config=SessionConfig())


@pytest.fixture
def guild_options() -> list[SelectOption]:
    return [
        SelectOption.of("Dark Matter", "111"),
        SelectOption.of("Eclipse Lab", "222"),
    ]
