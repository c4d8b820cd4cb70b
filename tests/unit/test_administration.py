"""
Tests for LendingPlatform administrative operations

Every admin operation checks the owner capability before anything else, then
validates its input, then applies and notifies.
"""

import pytest
from datetime import timedelta

from microlend import (
    EventType, MIN_VOTING_PERIOD,
    NotOwner, DuplicateMember, InvalidWeight, NotAMember, PeriodTooShort,
    InvalidThreshold, InvalidAmount, TransferFailed, Unauthorized, NotAGovernor,
)

from tests.fake_view import FakeValueLedger, OWNER, approve, close_voting


def last_event(platform):
    return platform.event_log[-1]


class TestOwnerCapability:
    """Non-owners are rejected first, before input validation."""

    @pytest.mark.parametrize("call", [
        lambda p: p.add_member("mallory", "x", 0),
        lambda p: p.remove_member("mallory", "ghost"),
        lambda p: p.set_voting_period("mallory", timedelta(seconds=1)),
        lambda p: p.set_required_votes("mallory", 0),
        lambda p: p.emergency_withdraw("mallory", p.value_ledger, 0, "mallory"),
        lambda p: p.transfer_ownership("mallory", "mallory"),
    ])
    def test_non_owner_rejected_before_validation(self, governed, call):
        before = len(governed.event_log)
        with pytest.raises(NotOwner):
            call(governed)
        assert len(governed.event_log) == before

    def test_not_owner_is_unauthorized(self):
        assert issubclass(NotOwner, Unauthorized)


class TestMembers:

    def test_add_member(self, platform):
        member = platform.add_member(OWNER, "gov_a", 2)
        assert member.joined_at == platform.current_time
        assert platform.is_member("gov_a")
        assert platform.voting_weight("gov_a") == 2
        event = last_event(platform)
        assert event.event_type == EventType.MEMBER_ADDED
        assert (event.principal, event.value) == ("gov_a", 2)

    def test_add_duplicate(self, governed):
        with pytest.raises(DuplicateMember):
            governed.add_member(OWNER, "gov_a", 9)
        assert governed.voting_weight("gov_a") == 2

    def test_add_zero_weight(self, platform):
        with pytest.raises(InvalidWeight):
            platform.add_member(OWNER, "gov_a", 0)
        assert platform.event_log == []

    def test_remove_member(self, governed):
        governed.remove_member(OWNER, "gov_a")
        assert not governed.is_member("gov_a")
        assert governed.voting_weight("gov_a") == 0
        event = last_event(governed)
        assert event.event_type == EventType.MEMBER_REMOVED
        assert event.principal == "gov_a"

    def test_remove_unknown(self, governed):
        with pytest.raises(NotAMember):
            governed.remove_member(OWNER, "ghost")

    def test_removed_governor_cannot_vote(self, governed):
        loan_id = governed.request_loan("alice", 100, 72)
        governed.remove_member(OWNER, "gov_a")
        with pytest.raises(NotAGovernor):
            governed.cast_vote(loan_id, "gov_a", True)


class TestGovernanceParameters:

    def test_set_voting_period_applies_to_new_loans_only(self, governed):
        first = governed.request_loan("alice", 10, 50)
        governed.set_voting_period(OWNER, timedelta(days=7))
        second = governed.request_loan("bob", 10, 50)

        now = governed.current_time
        assert governed.get_loan(first).voting_deadline == now + timedelta(days=3)
        assert governed.get_loan(second).voting_deadline == now + timedelta(days=7)

    def test_voting_period_event(self, governed):
        governed.set_voting_period(OWNER, timedelta(days=5))
        event = last_event(governed)
        assert event.event_type == EventType.VOTING_PERIOD_UPDATED
        assert event.value == timedelta(days=5)

    def test_minimum_period_accepted(self, governed):
        governed.set_voting_period(OWNER, MIN_VOTING_PERIOD)
        assert governed.voting_period == MIN_VOTING_PERIOD

    def test_period_too_short(self, governed):
        with pytest.raises(PeriodTooShort):
            governed.set_voting_period(OWNER, MIN_VOTING_PERIOD - timedelta(seconds=1))
        assert governed.voting_period == timedelta(days=3)

    def test_set_required_votes(self, governed):
        governed.set_required_votes(OWNER, 5)
        assert governed.required_votes == 5
        event = last_event(governed)
        assert event.event_type == EventType.REQUIRED_VOTES_UPDATED
        assert event.value == 5

    @pytest.mark.parametrize("threshold", [0, -1])
    def test_invalid_threshold(self, governed, threshold):
        with pytest.raises(InvalidThreshold):
            governed.set_required_votes(OWNER, threshold)
        assert governed.required_votes == 3

    def test_raised_threshold_governs_in_flight_votes(self, governed):
        loan_id = governed.request_loan("alice", 100, 72)
        governed.set_required_votes(OWNER, 5)
        loan = approve(governed, loan_id, "gov_a", "gov_b")
        assert loan.yes_weight == 4
        assert not loan.approved

    def test_lowered_threshold_needs_another_yes_vote(self, governed):
        governed.add_member(OWNER, "gov_c", 1)
        loan_id = governed.request_loan("alice", 100, 72)
        governed.cast_vote(loan_id, "gov_a", True)
        governed.set_required_votes(OWNER, 2)
        assert not governed.get_loan(loan_id).approved

        assert governed.cast_vote(loan_id, "gov_c", True).approved


class TestEmergencyWithdraw:

    def test_moves_pool_funds(self, governed, token):
        governed.emergency_withdraw(OWNER, token, 40, "vault")
        assert governed.pool_balance() == 110
        assert token.balance_of("vault") == 40
        event = last_event(governed)
        assert event.event_type == EventType.EMERGENCY_WITHDRAWAL
        assert (event.principal, event.value) == ("vault", 40)

    def test_ignores_loan_state(self, governed, token):
        loan_id = governed.request_loan("alice", 100, 72)
        approve(governed, loan_id, "gov_a", "gov_b")
        governed.emergency_withdraw(OWNER, token, 150, "vault")
        close_voting(governed, loan_id)
        with pytest.raises(TransferFailed):
            governed.fund_loan(loan_id)
        assert not governed.get_loan(loan_id).funded

    def test_other_asset(self, governed):
        other = FakeValueLedger({"pool": 7})
        governed.emergency_withdraw(OWNER, other, 7, "vault")
        assert other.balances["vault"] == 7
        assert other.calls == [("transfer", ("pool", "vault", 7))]

    @pytest.mark.parametrize("amount", [0, -1, True])
    def test_invalid_amount(self, governed, token, amount):
        with pytest.raises(InvalidAmount):
            governed.emergency_withdraw(OWNER, token, amount, "vault")

    def test_refused_transfer(self, governed, token):
        before = len(governed.event_log)
        with pytest.raises(TransferFailed):
            governed.emergency_withdraw(OWNER, token, 151, "vault")
        assert governed.pool_balance() == 150
        assert len(governed.event_log) == before


class TestOwnershipTransfer:

    def test_transfer_ownership(self, governed):
        governed.transfer_ownership(OWNER, "new_admin")
        assert governed.owner == "new_admin"
        assert last_event(governed).event_type == EventType.OWNERSHIP_TRANSFERRED

        with pytest.raises(NotOwner):
            governed.set_required_votes(OWNER, 4)
        governed.set_required_votes("new_admin", 4)
        assert governed.required_votes == 4

    def test_empty_new_owner(self, governed):
        with pytest.raises(ValueError):
            governed.transfer_ownership(OWNER, "")
        assert governed.owner == OWNER
