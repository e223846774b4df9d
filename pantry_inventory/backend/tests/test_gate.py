from datetime import datetime

import pytest

from pantry.gate import ADMIN_TABS, MEMBER_TABS, GateDecision, Tab, View, decide
from pantry.schemas import UserSchema


def _user(approved=True, admin=False):
    return UserSchema(
        id="u-1",
        email="ana@paroquia.org",
        full_name="Ana Souza",
        is_approved=approved,
        is_super_admin=admin,
        created_at=datetime(2024, 3, 1),
    )


@pytest.mark.parametrize("user", [None, _user(), _user(admin=True), _user(approved=False)])
def test_loading_wins_over_everything(user):
    assert decide(user, loading=True) == GateDecision(View.LOADING)


def test_no_user_sees_entry():
    assert decide(None, loading=False) == GateDecision(View.ENTRY)


def test_unapproved_user_sees_entry():
    assert decide(_user(approved=False), loading=False).view is View.ENTRY
    # even a super admin flag does not bypass approval
    assert decide(_user(approved=False, admin=True), loading=False).view is View.ENTRY


def test_member_workspace():
    decision = decide(_user(), loading=False)
    assert decision.view is View.WORKSPACE
    assert decision.tabs == (Tab.ITEMS, Tab.WITHDRAWALS)
    assert not decision.is_admin


def test_admin_workspace():
    decision = decide(_user(admin=True), loading=False)
    assert decision.view is View.WORKSPACE
    assert decision.tabs == MEMBER_TABS + ADMIN_TABS
    assert decision.is_admin
