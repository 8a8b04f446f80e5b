"""
Master Guild Setup — four-page wizard run in the admin's private channel.

Flow:
  1) Welcome              (Next)
  2) Pick Server          (server dropdown + Back/Next)
  3) Pick Roles           (Mods/Players/Create + role dropdown + Back/Next)
  4) Pick Admin Category  (Create + category dropdown + Back/Done)

Handlers keep the user's choices in the ComponentContext. Done persists
them under `guilds.<guildId>` in the YAML config store and completes the
chain.
"""
from __future__ import annotations

import structlog
from typing import Iterable, Optional

from chains.chain import PagedChain
from chains.components import Buttons, Dropdowns, ID_BACK, ID_DONE, ID_NEXT, to_options
from chains.sessions import ChainSession, SessionManager
from config.settings import get_settings
from config.store import YamlConfigStore
from context.component_context import ComponentContext, selected_key
from models.schemas import Page, SelectOption

logger = structlog.get_logger()

CHAIN_TITLE = "Setup Wizard"

# Component ids (buttons / dropdowns)
ID_DD_SERVER = "MasterServerPick"
ID_BTN_MODS = "ModsRoleButton"
ID_BTN_PLAYERS = "PlayersRoleButton"
ID_BTN_CREATE_ROLES = "CreateRoleButton"
ID_DD_ROLES = "RolePicker"
ID_DD_CATEGORY = "CategoryPicker"
ID_BTN_CREATE_PANEL = "CreateAdminPanel"

DEFAULT_ROLES = ("Mods", "Players", "Admin")
DEFAULT_CATEGORIES = ("Admin Panel", "Logs", "General")

NO_ELIGIBLE_GUILDS = (
    "⚠️ I can't find any servers where you are **Owner** or have "
    "**Administrator** permissions while I'm present.\n"
    "• Invite me to your server, or\n"
    "• Ensure you have Admin perms where I'm installed.\n"
    "Then run `/setup` or restart me."
)

# Context keys
GUILD_NAMES = "server.names"          # guild id → guild name
ROLE_MODE = "roleMode"


class GuildSetupWizard:

    def __init__(self, sessions: SessionManager, store: YamlConfigStore):
        self.sessions = sessions
        self.store = store

    # ── Entry points ──────────────────────────────────

    async def greet_admin(
        self,
        guild_options: Iterable[SelectOption],
        admin_id: str = None,
        roles: Iterable[str] = DEFAULT_ROLES,
        categories: Iterable[str] = DEFAULT_CATEGORIES,
    ) -> Optional[ChainSession]:
        """
        Start the wizard for the admin, or explain why it can't start.
        `admin_id` defaults to the configured `admin_id` setting.
        """
        if admin_id is None:
            admin_id = get_settings().admin_id
        if not admin_id:
            logger.warning("admin_id_missing")
            return None

        guild_options = list(guild_options)
        logger.info("eligible_guilds_found", admin_id=admin_id, count=len(guild_options))
        if not guild_options:
            try:
                await self.sessions.platform.send_private_text(admin_id, NO_ELIGIBLE_GUILDS)
            except Exception as e:
                logger.error("admin_dm_failed", admin_id=admin_id, error=str(e))
            return None
        return await self.start(admin_id, guild_options, roles, categories)

    async def start(
        self,
        user_id: str,
        guild_options: Iterable[SelectOption],
        roles: Iterable[str] = DEFAULT_ROLES,
        categories: Iterable[str] = DEFAULT_CATEGORIES,
    ) -> ChainSession:
        guilds = to_options(guild_options)
        chain = self.build_chain(guilds, roles, categories)
        seed = {GUILD_NAMES: {g.value: g.label for g in guilds}, ROLE_MODE: "mods"}
        return await self.sessions.start(user_id, chain, seed=seed)

    # ── Chain composition ─────────────────────────────

    def build_chain(
        self,
        guilds: Iterable[SelectOption],
        roles: Iterable[str],
        categories: Iterable[str],
    ) -> PagedChain:
        welcome = Page(
            title="Welcome to the Setup Wizard!",
            body="Please click Next to go to the next page.",
        ).with_button(3, Buttons.next())

        pick_server = (
            Page(title="Pick the server to use as the master server")
            .with_button(0, Buttons.back())
            .with_button(3, Buttons.next())
            .with_dropdown(Dropdowns.dropdown(ID_DD_SERVER, "Pick a Server", guilds))
        )

        pick_roles = (
            Page(title="Pick a role for Mods and Players",
                 body="Click Mods/Players to switch which role you are picking.")
            .with_button(0, Buttons.back())
            .with_button(3, Buttons.next())
            .with_button(5, Buttons.button(ID_BTN_MODS, "Mods"))
            .with_button(6, Buttons.button(ID_BTN_PLAYERS, "Players"))
            .with_button(7, Buttons.button(ID_BTN_CREATE_ROLES, "Create"))
            .with_dropdown(Dropdowns.dropdown(ID_DD_ROLES, "Pick a Role", roles))
        )

        pick_category = (
            Page(title="Pick a category for the Admin Panel.")
            .with_button(0, Buttons.back())
            .with_button(2, Buttons.button(ID_BTN_CREATE_PANEL, "Create"))
            .with_button(3, Buttons.done())
            .with_dropdown(Dropdowns.dropdown(ID_DD_CATEGORY, "Pick a Category", categories))
        )

        return (
            PagedChain.Builder()
            .chain_id(CHAIN_TITLE)
            .add_page(welcome)
            .add_page(pick_server)
            .add_page(pick_roles)
            .add_page(pick_category)
            .wire_navigation(ID_BACK, ID_NEXT, ID_DONE)
            .on(ID_DD_SERVER, self.on_server_picked)
            .on(ID_DD_ROLES, self.on_role_picked)
            .on(ID_DD_CATEGORY, lambda ctx: ctx.put("adminCategory", ctx.interaction_value))
            .on(ID_BTN_MODS, lambda ctx: self._set_role_mode(ctx, "mods"))
            .on(ID_BTN_PLAYERS, lambda ctx: self._set_role_mode(ctx, "players"))
            .on(ID_BTN_CREATE_ROLES, self.on_create_roles)
            .on(ID_BTN_CREATE_PANEL, self.on_create_panel)
            .on(ID_DONE, self.persist_and_complete)
            .build()
        )

    # ── Handlers ──────────────────────────────────────

    @staticmethod
    def on_server_picked(ctx: ComponentContext) -> None:
        guild_id = ctx.interaction_value
        names = ctx.get_or_default(GUILD_NAMES, {})
        if guild_id is None or guild_id not in names:
            logger.warning("unknown_guild_picked", user_id=ctx.user_id, guild_id=guild_id)
            return
        ctx.put("guildId", guild_id)
        ctx.put("guildName", names[guild_id])

    @staticmethod
    def on_role_picked(ctx: ComponentContext) -> None:
        role = ctx.interaction_value
        if ctx.get_or_default(ROLE_MODE, "mods") == "mods":
            ctx.put("modsRole", role)
        else:
            ctx.put("playersRole", role)

    @staticmethod
    def _set_role_mode(ctx: ComponentContext, mode: str) -> None:
        ctx.put(ROLE_MODE, mode)
        ctx.put(selected_key(ID_BTN_MODS), mode == "mods")
        ctx.put(selected_key(ID_BTN_PLAYERS), mode == "players")
        # Show the role already chosen for this mode
        ctx.put(selected_key(ID_DD_ROLES), ctx.get("modsRole" if mode == "mods" else "playersRole"))

    @staticmethod
    def on_create_roles(ctx: ComponentContext) -> None:
        # TODO: create the roles in the selected guild once a guild API client is wired in
        ctx.put("modsRole", ctx.get_or_default("modsRole", "Created:Mods"))
        ctx.put("playersRole", ctx.get_or_default("playersRole", "Created:Players"))

    @staticmethod
    def on_create_panel(ctx: ComponentContext) -> None:
        ctx.put("adminCategory", ctx.get_or_default("adminCategory", "Created:AdminPanel"))

    def persist_and_complete(self, ctx: ComponentContext) -> None:
        try:
            guild_id = ctx.get_string("guildId")
            if not guild_id:
                logger.warning("guild_setup_without_guild", user_id=ctx.user_id)
                return

            config = {
                "guildId": guild_id,
                "guildName": ctx.get_string("guildName"),
                "modsRole": ctx.get_string("modsRole"),
                "playersRole": ctx.get_string("playersRole"),
                "adminCategory": ctx.get_string("adminCategory"),
            }
            self.store.put(f"guilds.{guild_id}", config)
            self.store.save()
            logger.info("guild_setup_saved",
                        guild_id=guild_id, guild_name=config["guildName"], user_id=ctx.user_id)
        except Exception as e:
            logger.error("guild_setup_persist_failed", user_id=ctx.user_id, error=str(e))
        finally:
            ctx.complete()
