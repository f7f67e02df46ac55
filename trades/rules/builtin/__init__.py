from __future__ import annotations

import dataclasses

from .blocked_user_rule import BlockedUserRule
from .busy_item_rule import BusyItemRule
from .duplicate_item_rule import DuplicateItemRule
from .item_sides_rule import ItemSidesRule
from .ownership_rule import OwnershipRule
from .participants_rule import ParticipantsRule
from .wanted_availability_rule import WantedAvailabilityRule

BUILTIN_RULES = [
    ParticipantsRule(),
    ItemSidesRule(),
    DuplicateItemRule(),
    OwnershipRule(),
    BlockedUserRule(),
    BusyItemRule(),
    WantedAvailabilityRule(),
]


def build_builtin_rules() -> list:
    # Fresh instances so set_enabled() on one registry doesn't leak into others.
    return [dataclasses.replace(rule) for rule in BUILTIN_RULES]
