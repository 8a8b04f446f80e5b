"""
Component factories for building page templates.

Navigation buttons use the reserved ids below; `PagedChain.Builder.wire_navigation`
binds them to back / next / done behaviour.
"""
from __future__ import annotations

from typing import Iterable, Union

from models.schemas import Button, ButtonStyle, Dropdown, SelectOption

ID_BACK = "back"
ID_NEXT = "next"
ID_DONE = "done"

NAVIGATION_IDS = (ID_BACK, ID_NEXT, ID_DONE)


class Buttons:

    @staticmethod
    def back(label: str = "◀ Back") -> Button:
        return Button(id=ID_BACK, label=label, style=ButtonStyle.SECONDARY)

    @staticmethod
    def next(label: str = "Next ▶") -> Button:
        return Button(id=ID_NEXT, label=label, style=ButtonStyle.PRIMARY)

    @staticmethod
    def done(label: str = "Done") -> Button:
        return Button(id=ID_DONE, label=label, style=ButtonStyle.SUCCESS)

    @staticmethod
    def button(component_id: str, label: str,
               style: ButtonStyle = ButtonStyle.PRIMARY) -> Button:
        return Button(id=component_id, label=label, style=style)


OptionLike = Union[str, SelectOption, dict]


def to_options(raw: Iterable[OptionLike]) -> tuple[SelectOption, ...]:
    """Normalise strings, dicts and SelectOptions into SelectOptions."""
    options = []
    for item in raw or ():
        if isinstance(item, SelectOption):
            options.append(item)
        elif isinstance(item, dict):
            label = str(item.get("label", item.get("value", "")))
            options.append(SelectOption.of(label, item.get("value")))
        else:
            options.append(SelectOption.of(str(item)))
    return tuple(options)


class Dropdowns:

    @staticmethod
    def dropdown(component_id: str, placeholder: str,
                 options: Iterable[OptionLike] = ()) -> Dropdown:
        return Dropdown(id=component_id, placeholder=placeholder,
                        options=to_options(options))
