"""
voting.py - Weighted Voting Engine

Pure functions that turn a governor's vote into a PendingChange:
    compute_vote(view, loan_id, voter, support) -> PendingChange
    tally(view, loan_id) -> VoteTally

Quorum is a fixed weight sum, not a fraction of votes cast. The yes and no
totals are independent accumulators, so both may exceed the threshold.

Approval is terminal: the yes-vote that brings yes_weight to the threshold sets
approved=True and emits LOAN_APPROVED. Any later vote on the loan raises
AlreadyResolved, so the approval notification fires exactly once.

Rejection is advisory: the no-vote that brings no_weight to the threshold
emits LOAN_REJECTED and nothing else. Voting continues, and a later yes
majority may still approve the loan before its deadline.
"""

from __future__ import annotations
from dataclasses import dataclass

from .core import (
    AlreadyResolved, AlreadyVoted, EventType, LoanStateChange, NotAGovernor,
    PendingChange, PendingEvent, PlatformView, Principal, VotingClosed,
    build_change,
)


@dataclass(frozen=True, slots=True)
class VoteTally:
    """Weighted totals for one loan against the current threshold."""
    loan_id: int
    yes_weight: int
    no_weight: int
    required_votes: int
    voter_count: int

    @property
    def yes_reached(self) -> bool:
        return self.yes_weight >= self.required_votes

    @property
    def no_reached(self) -> bool:
        return self.no_weight >= self.required_votes


def compute_vote(
    view: PlatformView,
    loan_id: int,
    voter: Principal,
    support: bool,
) -> PendingChange:
    """
    Record one governor's vote on a loan.

    Checks, in order:
        NotAGovernor    voter is not a member
        InvalidLoanId   loan_id is not assigned
        VotingClosed    now >= voting_deadline
        AlreadyVoted    voter already voted on this loan
        AlreadyResolved loan is approved or funded

    Returns:
        PendingChange with the updated loan record, VOTE_CAST, and at most one
        of LOAN_APPROVED / LOAN_REJECTED.
    """
    if not view.is_member(voter):
        raise NotAGovernor(f"{voter} is not a governor")

    loan = view.get_loan(loan_id)
    now = view.current_time

    if not loan.is_voting_open(now):
        raise VotingClosed(
            f"Voting on loan {loan_id} closed at {loan.voting_deadline} (now {now})"
        )
    if loan.has_voted(voter):
        raise AlreadyVoted(f"{voter} already voted on loan {loan_id}")
    if loan.approved or loan.funded:
        raise AlreadyResolved(f"Loan {loan_id} is already resolved")

    weight = view.voting_weight(voter)
    threshold = view.required_votes
    voters = loan.voters | {voter}
    events = [PendingEvent(EventType.VOTE_CAST, loan_id, voter, support)]

    if support:
        yes_weight = loan.yes_weight + weight
        approved = yes_weight >= threshold
        new_loan = loan.evolve(yes_weight=yes_weight, approved=approved, voters=voters)
        if approved:
            events.append(PendingEvent(EventType.LOAN_APPROVED, loan_id, loan.borrower, yes_weight))
    else:
        no_weight = loan.no_weight + weight
        new_loan = loan.evolve(no_weight=no_weight, voters=voters)
        if loan.no_weight < threshold <= no_weight:
            events.append(PendingEvent(EventType.LOAN_REJECTED, loan_id, loan.borrower, no_weight))

    return build_change(
        state_changes=[LoanStateChange(loan_id=loan_id, old_state=loan, new_state=new_loan)],
        events=events,
    )


def tally(view: PlatformView, loan_id: int) -> VoteTally:
    """Current weighted totals for a loan."""
    loan = view.get_loan(loan_id)
    return VoteTally(
        loan_id=loan_id,
        yes_weight=loan.yes_weight,
        no_weight=loan.no_weight,
        required_votes=view.required_votes,
        voter_count=len(loan.voters),
    )
