from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from pantry.schemas import UserSchema


class View(str, Enum):
    LOADING = "loading"
    ENTRY = "entry"
    WORKSPACE = "workspace"


class Tab(str, Enum):
    ITEMS = "items"
    WITHDRAWALS = "withdrawals"
    USERS = "users"
    REPORTS = "reports"


MEMBER_TABS = (Tab.ITEMS, Tab.WITHDRAWALS)
ADMIN_TABS = (Tab.USERS, Tab.REPORTS)


@dataclass(frozen=True)
class GateDecision:
    view: View
    tabs: Tuple[Tab, ...] = ()

    @property
    def is_admin(self) -> bool:
        return Tab.USERS in self.tabs


def decide(user: Optional[UserSchema], loading: bool) -> GateDecision:
    """Which surface a client may see for the given session state."""
    if loading:
        return GateDecision(View.LOADING)
    if user is None or not user.is_approved:
        return GateDecision(View.ENTRY)
    tabs = MEMBER_TABS + ADMIN_TABS if user.is_super_admin else MEMBER_TABS
    return GateDecision(View.WORKSPACE, tabs)
