"""
Core data models for the PageChain system.
These are the universal types shared across all modules.
"""
from __future__ import annotations

from enum import Enum
from typing import ClassVar, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


# ──────────────────────────────────────────────────────────────
#  Enums
# ──────────────────────────────────────────────────────────────

class ButtonStyle(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"
    SUCCESS = "success"
    DANGER = "danger"


class ComponentType(str, Enum):
    BUTTON = "button"
    SELECT_MENU = "select_menu"


# ──────────────────────────────────────────────────────────────
#  Page template — what a chain step looks like before rendering
# ──────────────────────────────────────────────────────────────

class Button(BaseModel):
    """A button descriptor placed into a page slot."""
    model_config = ConfigDict(frozen=True)

    id: str
    label: str
    style: ButtonStyle = ButtonStyle.PRIMARY
    disabled: bool = False


class SelectOption(BaseModel):
    """A single dropdown entry. Label is shown, value is reported back."""
    model_config = ConfigDict(frozen=True)

    label: str
    value: str

    @classmethod
    def of(cls, label: str, value: str = None) -> "SelectOption":
        return cls(label=label, value=label if value is None else value)


class Dropdown(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    placeholder: str = ""
    options: tuple[SelectOption, ...] = ()


class Page(BaseModel):
    """
    Immutable page template.

    Buttons live in a fixed number of slots (two rows of five); slots are
    sparse. `with_button` / `with_dropdown` return a new Page.
    """
    model_config = ConfigDict(frozen=True)

    SLOTS: ClassVar[int] = 10
    ROW_WIDTH: ClassVar[int] = 5

    title: str
    body: Optional[str] = None
    buttons: tuple[Optional[Button], ...] = Field(default_factory=lambda: (None,) * Page.SLOTS)
    dropdown: Optional[Dropdown] = None

    def with_button(self, slot: int, button: Button) -> "Page":
        if not 0 <= slot < len(self.buttons):
            raise ValueError(f"button slot {slot} out of range 0..{len(self.buttons) - 1}")
        slots = list(self.buttons)
        slots[slot] = button
        return self.model_copy(update={"buttons": tuple(slots)})

    def with_dropdown(self, dropdown: Dropdown) -> "Page":
        return self.model_copy(update={"dropdown": dropdown})

    def component_ids(self) -> list[str]:
        ids = [b.id for b in self.buttons if b is not None]
        if self.dropdown:
            ids.append(self.dropdown.id)
        return ids

    def has_component(self, component_id: str) -> bool:
        return component_id in self.component_ids()


# ──────────────────────────────────────────────────────────────
#  Rendered payload — what actually goes over the wire
# ──────────────────────────────────────────────────────────────

class ButtonComponent(BaseModel):
    type: ComponentType = ComponentType.BUTTON
    custom_id: str
    label: str
    style: ButtonStyle = ButtonStyle.PRIMARY
    disabled: bool = False


class RenderedOption(BaseModel):
    label: str
    value: str
    default: bool = False


class SelectMenuComponent(BaseModel):
    type: ComponentType = ComponentType.SELECT_MENU
    custom_id: str
    placeholder: str = ""
    options: list[RenderedOption] = []


class ActionRow(BaseModel):
    components: list[Union[ButtonComponent, SelectMenuComponent]] = []


class RenderedPayload(BaseModel):
    """Displayable content + interactive component layout."""
    content: str
    components: list[ActionRow] = []

    def to_wire(self) -> dict:
        return self.model_dump(mode="json")


# ──────────────────────────────────────────────────────────────
#  Platform references & inbound events
# ──────────────────────────────────────────────────────────────

class MessageRef(BaseModel):
    """Identity of a sent message: where it lives and its id."""
    model_config = ConfigDict(frozen=True)

    channel_id: str
    message_id: str


class InteractionEvent(BaseModel):
    """A user acted on an interactive component."""
    component_id: str
    user_id: str
    channel_id: str = ""
    values: list[str] = []                    # empty for button presses

    @property
    def value(self) -> Optional[str]:
        return self.values[0] if self.values else None

    @property
    def is_selection(self) -> bool:
        return bool(self.values)
