"""
Paged Chain engine.

Chains are immutable, ordered wizards: each page is a prompt with button
slots and at most one dropdown. A SessionManager runs a chain per user,
dispatching component interactions through the HandlerRegistry and
keeping one prompt message per user up to date.
"""
from chains.components import (
    Buttons, Dropdowns, ID_BACK, ID_NEXT, ID_DONE, NAVIGATION_IDS,
)
from chains.registry import HandlerRegistry, Handler, UnknownComponentError
from chains.chain import PagedChain, ChainBuildError
from chains.renderer import PageRenderer
from chains.sessions import SessionManager, ChainSession, InteractionOutcome
