"""
Page Renderer — merges a Page template with live context overrides.

Option resolution for a dropdown:
  1. `<dropdown_id>.options` in the context, if present
  2. the page template's static option list

Selection: if the context holds `<dropdown_id>.selected`, the option with
that value is marked as the default. Buttons whose id has a truthy
`<button_id>.selected` are drawn with the success style.

Navigation buttons are disabled at the chain boundaries (back on the
first page, next on the last). Rendering never mutates the context and
returns equal payloads for equal inputs.
"""
from __future__ import annotations

from typing import Any, Optional

from chains.components import ID_BACK, ID_NEXT, to_options
from context.component_context import ComponentContext, options_key, selected_key
from models.schemas import (
    ActionRow, Button, ButtonComponent, ButtonStyle, Dropdown, Page,
    RenderedOption, RenderedPayload, SelectMenuComponent,
)

# Most chat platforms cap a select menu at 25 entries
MAX_OPTIONS = 25


class PageRenderer:

    def __init__(self, back_id: str = ID_BACK, next_id: str = ID_NEXT):
        self.back_id = back_id
        self.next_id = next_id

    def render(
        self,
        chain_id: str,
        page_index: int,
        total_pages: int,
        page: Page,
        ctx: ComponentContext,
    ) -> RenderedPayload:
        rows: list[ActionRow] = []

        if page.dropdown is not None:
            rows.append(ActionRow(components=[self._render_dropdown(page.dropdown, ctx)]))

        for start in range(0, len(page.buttons), Page.ROW_WIDTH):
            row = [
                self._render_button(button, page_index, total_pages, ctx)
                for button in page.buttons[start:start + Page.ROW_WIDTH]
                if button is not None
            ]
            if row:
                rows.append(ActionRow(components=row))

        return RenderedPayload(
            content=self.format_content(chain_id, page_index, total_pages, page),
            components=rows,
        )

    def render_completion(self, chain_id: str, text: str) -> RenderedPayload:
        return RenderedPayload(content=f"**{chain_id}**\n{text}", components=[])

    # ── Pieces ────────────────────────────────────────

    @staticmethod
    def format_content(chain_id: str, page_index: int, total_pages: int, page: Page) -> str:
        lines = [f"**{page.title}**"]
        if page.body:
            lines.append(page.body)
        lines.append(f"{chain_id} · Page {page_index + 1}/{total_pages}")
        return "\n".join(lines)

    def _render_button(
        self, button: Button, page_index: int, total_pages: int, ctx: ComponentContext,
    ) -> ButtonComponent:
        disabled = button.disabled
        if button.id == self.back_id and page_index <= 0:
            disabled = True
        elif button.id == self.next_id and page_index >= total_pages - 1:
            disabled = True

        style = button.style
        if ctx.get(selected_key(button.id)):
            style = ButtonStyle.SUCCESS

        return ButtonComponent(
            custom_id=button.id,
            label=button.label,
            style=style,
            disabled=disabled,
        )

    def _render_dropdown(self, dropdown: Dropdown, ctx: ComponentContext) -> SelectMenuComponent:
        override: Optional[Any] = ctx.get(options_key(dropdown.id))
        options = to_options(override) if override is not None else dropdown.options
        selected = ctx.get_string(selected_key(dropdown.id))

        return SelectMenuComponent(
            custom_id=dropdown.id,
            placeholder=dropdown.placeholder,
            options=[
                RenderedOption(label=o.label, value=o.value, default=o.value == selected)
                for o in options[:MAX_OPTIONS]
            ],
        )
