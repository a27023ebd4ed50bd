# tests/services/test_permissions.py
"""Tests for the permission evaluator."""

from __future__ import annotations

from chorus_messaging.models import PrivacySetting
from chorus_messaging.services.permissions import Permission, PermissionEvaluator
from tests.conftest import ALICE, BOB


def test_unknown_users_default_to_anyone(db_session, identity) -> None:
    evaluator = PermissionEvaluator(identity)
    assert evaluator.evaluate(db_session, BOB, ALICE) is Permission.ALLOWED


def test_block_in_either_direction_wins(db_session, identity, block) -> None:
    evaluator = PermissionEvaluator(identity)
    block(ALICE, BOB)

    assert evaluator.evaluate(db_session, BOB, ALICE) is Permission.BLOCKED
    assert evaluator.evaluate(db_session, ALICE, BOB) is Permission.BLOCKED
    assert evaluator.is_blocked_either_way(db_session, BOB, ALICE)


def test_nobody_privacy_blocks_new_conversations(db_session, identity, set_privacy) -> None:
    set_privacy(ALICE, PrivacySetting.NOBODY)
    evaluator = PermissionEvaluator(identity)

    assert evaluator.evaluate(db_session, BOB, ALICE) is Permission.BLOCKED
    assert evaluator.evaluate(db_session, ALICE, BOB) is Permission.ALLOWED


def test_followers_privacy_without_follow_is_a_request(db_session, identity, set_privacy) -> None:
    set_privacy(ALICE, PrivacySetting.FOLLOWERS)
    evaluator = PermissionEvaluator(identity)

    assert evaluator.evaluate(db_session, BOB, ALICE) is Permission.ALLOWED_AS_REQUEST


def test_followers_privacy_allows_users_the_recipient_follows(
    db_session, identity, set_privacy, follow
) -> None:
    set_privacy(ALICE, PrivacySetting.FOLLOWERS)
    follow(ALICE, BOB)
    evaluator = PermissionEvaluator(identity)

    assert evaluator.evaluate(db_session, BOB, ALICE) is Permission.ALLOWED


def test_sender_following_recipient_is_not_enough(
    db_session, identity, set_privacy, follow
) -> None:
    set_privacy(ALICE, PrivacySetting.FOLLOWERS)
    follow(BOB, ALICE)
    evaluator = PermissionEvaluator(identity)

    assert evaluator.evaluate(db_session, BOB, ALICE) is Permission.ALLOWED_AS_REQUEST


def test_unblock_restores_permission(db_session, identity, block) -> None:
    block(ALICE, BOB)
    identity.unblock(db_session, ALICE, BOB)
    db_session.commit()

    assert PermissionEvaluator(identity).evaluate(db_session, BOB, ALICE) is Permission.ALLOWED
