"""
lifecycle.py - Loan Lifecycle Rules

Pure functions for each borrower-facing transition. Each one validates
against a read-only PlatformView and returns a PendingChange; the platform
applies it atomically (state changes, then transfers, then notifications).

    compute_loan_request(view, borrower, amount, credit_score)
        -> new Loan record + LOAN_REQUESTED
    compute_funding(view, loan_id)
        -> funded=True, pool -> borrower transfer, LOAN_FUNDED
    compute_repayment(view, loan_id, caller)
        -> repaid=True, borrower -> pool transfer (pool as spender), LOAN_REPAID

The pool check in compute_loan_request is a point-in-time sufficiency check,
not a reservation. A request accepted when funds were sufficient can still
fail to fund later if other approvals drained the pool in the meantime.
"""

from __future__ import annotations
from datetime import datetime

from .core import (
    EventType, InsufficientPoolFunds, InvalidAmount, InvalidCreditScore,
    LoanStateChange, NotApproved, NotBorrower, NotFundedOrAlreadyRepaid,
    PendingChange, PendingEvent, PlatformView, Principal, Transfer,
    VotingStillOpen, MAX_CREDIT_SCORE, build_change, is_positive_int,
)
from .loans import Loan


def validate_credit_score(credit_score: int) -> None:
    """
    Raises:
        InvalidCreditScore: If credit_score is not an integer in (0, MAX_CREDIT_SCORE]
    """
    if (
        not isinstance(credit_score, int) or isinstance(credit_score, bool)
        or not 0 < credit_score <= MAX_CREDIT_SCORE
    ):
        raise InvalidCreditScore(
            f"credit score must be in (0, {MAX_CREDIT_SCORE}], got {credit_score!r}"
        )


def voting_deadline_for(view: PlatformView, requested_at: datetime) -> datetime:
    return requested_at + view.voting_period


def compute_loan_request(
    view: PlatformView,
    borrower: Principal,
    amount: int,
    credit_score: int,
) -> PendingChange:
    """
    Open a loan request and its voting window.

    Checks, in order:
        InvalidAmount          amount is not a positive integer
        InvalidCreditScore     credit_score outside (0, 100]
        InsufficientPoolFunds  pool balance below amount

    Returns:
        PendingChange creating the loan with the next sequential id.
    """
    if not is_positive_int(amount):
        raise InvalidAmount(f"loan amount must be a positive integer, got {amount!r}")
    validate_credit_score(credit_score)

    available = view.pool_balance()
    if available < amount:
        raise InsufficientPoolFunds(
            f"pool holds {available}, cannot cover a request for {amount}"
        )

    now = view.current_time
    loan = Loan(
        loan_id=view.loan_count + 1,
        borrower=borrower,
        amount=amount,
        credit_score=credit_score,
        voting_deadline=voting_deadline_for(view, now),
        requested_at=now,
    )
    return build_change(
        state_changes=[LoanStateChange(loan_id=loan.loan_id, old_state=None, new_state=loan)],
        events=[PendingEvent(EventType.LOAN_REQUESTED, loan.loan_id, borrower, amount)],
    )


def compute_funding(view: PlatformView, loan_id: int) -> PendingChange:
    """
    Disburse an approved loan from the pool.

    Funding waits for the voting window to close even when the threshold was
    reached early, so borrowers cannot race governors.

    Checks, in order:
        InvalidLoanId    loan_id is not assigned
        NotApproved      loan is not approved, or is already funded
        VotingStillOpen  now < voting_deadline
    """
    loan = view.get_loan(loan_id)
    if not loan.approved or loan.funded:
        raise NotApproved(f"Loan {loan_id} is not approved or is already funded")

    now = view.current_time
    if loan.is_voting_open(now):
        raise VotingStillOpen(
            f"Loan {loan_id} voting window open until {loan.voting_deadline} (now {now})"
        )

    funded = loan.evolve(funded=True)
    return build_change(
        state_changes=[LoanStateChange(loan_id=loan_id, old_state=loan, new_state=funded)],
        transfers=[Transfer(
            amount=loan.amount,
            source=view.pool_wallet,
            dest=loan.borrower,
            reference=f"fund_loan_{loan_id}",
        )],
        events=[PendingEvent(EventType.LOAN_FUNDED, loan_id, loan.borrower, loan.amount)],
    )


def compute_repayment(
    view: PlatformView,
    loan_id: int,
    caller: Principal,
) -> PendingChange:
    """
    Return a funded loan's amount to the pool.

    The pool pulls the funds using the allowance the borrower granted it.

    Checks, in order:
        InvalidLoanId             loan_id is not assigned
        NotFundedOrAlreadyRepaid  loan was never funded, or is already repaid
        NotBorrower               caller is not the recorded borrower
    """
    loan = view.get_loan(loan_id)
    if not loan.funded or loan.repaid:
        raise NotFundedOrAlreadyRepaid(f"Loan {loan_id} is not funded or is already repaid")
    if caller != loan.borrower:
        raise NotBorrower(f"{caller} is not the borrower of loan {loan_id}")

    repaid = loan.evolve(repaid=True)
    return build_change(
        state_changes=[LoanStateChange(loan_id=loan_id, old_state=loan, new_state=repaid)],
        transfers=[Transfer(
            amount=loan.amount,
            source=loan.borrower,
            dest=view.pool_wallet,
            reference=f"repay_loan_{loan_id}",
            spender=view.pool_wallet,
        )],
        events=[PendingEvent(EventType.LOAN_REPAID, loan_id, loan.borrower, loan.amount)],
    )
