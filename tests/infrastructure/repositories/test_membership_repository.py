"""Tests for server and group membership lookups."""

from __future__ import annotations

import pytest

from server_hub.domain.entities import (
    MEMBER_ROLE_OWNER,
    SCOPE_KIND_GROUP,
    SCOPE_KIND_SERVER,
)
from server_hub.infrastructure.repositories import MembershipRepository


def test_membership_queries(db_session, make_user) -> None:
    alice = make_user("alice@example.com").id
    bob = make_user("bob@example.com").id
    repository = MembershipRepository(db_session)
    repository.add(
        scope_id="general", scope_kind=SCOPE_KIND_SERVER, user_id=alice, role=MEMBER_ROLE_OWNER
    )
    repository.add(scope_id="general", scope_kind=SCOPE_KIND_SERVER, user_id=bob)
    repository.add(scope_id="team", scope_kind=SCOPE_KIND_GROUP, user_id=bob)

    assert repository.list_member_ids("general") == [alice, bob]
    assert repository.filter_member_scopes(alice, ["general", "team", ""]) == {"general"}
    assert repository.filter_member_scopes(bob, []) == set()
    assert repository.is_member("team", bob) is True
    assert repository.is_member("team", alice) is False
    assert repository.get_role("general", alice) == MEMBER_ROLE_OWNER
    assert repository.get_role("general", bob) == "MEMBER"
    assert repository.get_role("unknown", bob) is None


def test_adding_same_member_twice_fails(db_session, make_user) -> None:
    alice = make_user("alice@example.com").id
    repository = MembershipRepository(db_session)
    repository.add(scope_id="general", scope_kind=SCOPE_KIND_SERVER, user_id=alice)

    with pytest.raises(ValueError):
        repository.add(scope_id="general", scope_kind=SCOPE_KIND_SERVER, user_id=alice)
