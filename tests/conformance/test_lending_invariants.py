"""
Lending Invariant Conformance Tests

INVARIANTS, after every operation (successful or not):

    ∀ loan L:
        L.funded ⟹ L.approved
        L.repaid ⟹ L.funded
        |L.voters| = number of VOTE_CAST notifications for L
        L.approved ⟺ exactly one LOAN_APPROVED notification for L

    pool balance = initial pool - Σ amount of loans funded and not repaid
    a failed operation publishes no notification
    notification sequence numbers are 0, 1, 2, ... with no gaps
"""

from datetime import timedelta

from hypothesis import given, settings, note
from hypothesis import strategies as st

from microlend import (
    EventType, FungibleToken, LendingError, LendingPlatform,
    AlreadyResolved, AlreadyVoted,
)

from tests.fake_view import START, OWNER, ISSUER


BORROWERS = ["alice", "bob", "carol"]
GOVERNORS = {"gov_a": 2, "gov_b": 2, "gov_c": 1}
INITIAL_POOL = 300


# =============================================================================
# STRATEGIES
# =============================================================================

@st.composite
def operation(draw):
    kind = draw(st.sampled_from(["request", "vote", "vote", "advance", "fund", "repay", "remove"]))
    if kind == "request":
        return (kind, draw(st.sampled_from(BORROWERS)),
                draw(st.integers(min_value=-5, max_value=200)),
                draw(st.integers(min_value=-1, max_value=102)))
    if kind == "vote":
        return (kind, draw(st.integers(min_value=0, max_value=6)),
                draw(st.sampled_from(sorted(GOVERNORS) + ["mallory"])),
                draw(st.booleans()))
    if kind == "advance":
        return (kind, draw(st.integers(min_value=0, max_value=96)))
    if kind == "fund":
        return (kind, draw(st.integers(min_value=0, max_value=6)))
    if kind == "repay":
        return (kind, draw(st.integers(min_value=0, max_value=6)),
                draw(st.sampled_from(BORROWERS)))
    return (kind, draw(st.sampled_from(sorted(GOVERNORS))))


def build_platform():
    token = FungibleToken("USDx", "Pool Dollar", issuer=ISSUER, verbose=False)
    platform = LendingPlatform(
        token, owner=OWNER, voting_period=timedelta(days=2),
        required_votes=3, initial_time=START, verbose=False,
    )
    token.mint(ISSUER, platform.pool_wallet, INITIAL_POOL)
    for governor, weight in GOVERNORS.items():
        platform.add_member(OWNER, governor, weight)
    return platform, token


def run(platform, token, op):
    kind = op[0]
    if kind == "request":
        platform.request_loan(op[1], op[2], op[3])
    elif kind == "vote":
        platform.cast_vote(op[1], op[2], op[3])
    elif kind == "advance":
        platform.advance_time(platform.current_time + timedelta(hours=op[1]))
    elif kind == "fund":
        platform.fund_loan(op[1])
    elif kind == "repay":
        loan_id, caller = op[1], op[2]
        if 1 <= loan_id <= platform.loan_count:
            token.approve(caller, platform.pool_wallet, platform.get_loan(loan_id).amount)
        platform.repay_loan(loan_id, caller)
    else:
        platform.remove_member(OWNER, op[1])


def check_invariants(platform, token):
    outstanding = 0
    for loan in platform.list_loans():
        assert not loan.funded or loan.approved
        assert not loan.repaid or loan.funded

        notes = platform.notifications_for(loan.loan_id)
        votes = [n for n in notes if n.event_type == EventType.VOTE_CAST]
        approvals = [n for n in notes if n.event_type == EventType.LOAN_APPROVED]
        assert len(votes) == len(loan.voters)
        assert len({n.principal for n in votes}) == len(votes)
        assert len(approvals) == (1 if loan.approved else 0)

        if loan.funded and not loan.repaid:
            outstanding += loan.amount

    assert platform.pool_balance() == INITIAL_POOL - outstanding
    assert token.verify_double_entry()['valid']

    seqs = [n.sequence_number for n in platform.event_log]
    assert seqs == list(range(len(seqs)))


# =============================================================================
# PROPERTIES
# =============================================================================

class TestLendingInvariants:
    """Property-based checks over random operation sequences."""

    @given(st.lists(operation(), min_size=1, max_size=40))
    @settings(max_examples=150, deadline=None)
    def test_invariants_hold_after_every_operation(self, ops):
        platform, token = build_platform()
        for op in ops:
            logged = len(platform.event_log)
            try:
                run(platform, token, op)
            except (LendingError, ValueError) as exc:
                note(f"{op} -> {type(exc).__name__}")
                assert len(platform.event_log) == logged
            check_invariants(platform, token)

    @given(
        st.lists(st.sampled_from(sorted(GOVERNORS)), min_size=1, max_size=12),
        st.booleans(),
    )
    @settings(max_examples=100)
    def test_second_vote_always_rejected(self, voters, support):
        platform, _ = build_platform()
        loan_id = platform.request_loan("alice", 10, 50)
        seen = set()
        for voter in voters:
            before = platform.get_loan(loan_id)
            try:
                platform.cast_vote(loan_id, voter, support)
            except LendingError as exc:
                assert voter in seen or before.approved
                assert isinstance(exc, (AlreadyVoted, AlreadyResolved))
                assert platform.get_loan(loan_id) == before
            else:
                assert voter not in seen
                seen.add(voter)
        assert platform.get_loan(loan_id).voters == frozenset(seen)

    @given(st.permutations(sorted(GOVERNORS)))
    @settings(max_examples=30)
    def test_approval_fires_once_in_any_vote_order(self, order):
        platform, _ = build_platform()
        loan_id = platform.request_loan("alice", 10, 50)
        for voter in order:
            if platform.get_loan(loan_id).approved:
                continue
            platform.cast_vote(loan_id, voter, True)
        approvals = [
            n for n in platform.notifications_for(loan_id)
            if n.event_type == EventType.LOAN_APPROVED
        ]
        assert platform.get_loan(loan_id).approved
        assert len(approvals) == 1
        assert approvals[0].value >= platform.required_votes
