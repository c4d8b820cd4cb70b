"""
loans.py - Loan Records and the Loan Repository

A Loan is an immutable record. Every transition (vote tallied, approved,
funded, repaid) produces a new record via dataclasses.replace(), and the
LoanRepository swaps it in. The repository is the only owner of loan records.

Lifecycle:
    requested -> approved -> funded -> repaid

    funded implies approved, repaid implies funded; flags never regress.
    Rejection is advisory (a notification only) and has no flag.

Identifiers are assigned sequentially starting at 1. The per-borrower index
is append-only and used for lookup only.
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, FrozenSet, Iterator, List

from .core import (
    InvalidLoanId, LoanStatus, Principal, UserLoanIndex,
    MAX_CREDIT_SCORE, is_positive_int,
)


@dataclass(frozen=True, slots=True)
class Loan:
    """
    A single credit request and its governance state.

    Attributes:
        loan_id: Sequential identifier (>= 1)
        borrower: Principal who requested the loan
        amount: Principal amount in pool units (> 0)
        credit_score: Caller-supplied score in (0, MAX_CREDIT_SCORE]
        voting_deadline: No votes accepted at or after this time; no funding before it
        requested_at: Platform time of the request
        yes_weight: Sum of weights of governors who voted yes
        no_weight: Sum of weights of governors who voted no
        approved: Set once yes_weight reaches the threshold
        funded: Set once the amount has been disbursed
        repaid: Set once the amount has been returned
        voters: Principals who have voted (membership test only, no stored choice)
    """
    loan_id: int
    borrower: Principal
    amount: int
    credit_score: int
    voting_deadline: datetime
    requested_at: datetime
    yes_weight: int = 0
    no_weight: int = 0
    approved: bool = False
    funded: bool = False
    repaid: bool = False
    voters: FrozenSet[Principal] = field(default_factory=frozenset)

    def __post_init__(self):
        if not is_positive_int(self.loan_id):
            raise ValueError(f"loan_id must be a positive integer, got {self.loan_id!r}")
        if not self.borrower or not self.borrower.strip():
            raise ValueError("Loan borrower cannot be empty")
        if not is_positive_int(self.amount):
            raise ValueError(f"Loan amount must be a positive integer, got {self.amount!r}")
        if not 0 < self.credit_score <= MAX_CREDIT_SCORE:
            raise ValueError(f"Loan credit_score out of range: {self.credit_score}")
        if self.funded and not self.approved:
            raise ValueError(f"Loan {self.loan_id}: funded implies approved")
        if self.repaid and not self.funded:
            raise ValueError(f"Loan {self.loan_id}: repaid implies funded")
        if not isinstance(self.voters, frozenset):
            object.__setattr__(self, 'voters', frozenset(self.voters))

    def has_voted(self, principal: Principal) -> bool:
        return principal in self.voters

    def is_voting_open(self, now: datetime) -> bool:
        return now < self.voting_deadline

    def status_at(self, now: datetime) -> LoanStatus:
        """Derive a display status at time now."""
        if self.repaid:
            return LoanStatus.REPAID
        if self.funded:
            return LoanStatus.FUNDED
        if self.approved:
            return LoanStatus.APPROVED
        if self.is_voting_open(now):
            return LoanStatus.VOTING
        return LoanStatus.EXPIRED

    def evolve(self, **changes: Any) -> Loan:
        """Return a copy with changes applied. The record itself never mutates."""
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        """All attributes as a plain dict; voters as a sorted list."""
        return {
            'loan_id': self.loan_id,
            'borrower': self.borrower,
            'amount': self.amount,
            'credit_score': self.credit_score,
            'voting_deadline': self.voting_deadline,
            'requested_at': self.requested_at,
            'yes_weight': self.yes_weight,
            'no_weight': self.no_weight,
            'approved': self.approved,
            'funded': self.funded,
            'repaid': self.repaid,
            'voters': sorted(self.voters),
        }

    def __repr__(self) -> str:
        flags = "".join(
            ch for ch, on in (("A", self.approved), ("F", self.funded), ("R", self.repaid)) if on
        ) or "-"
        return (
            f"Loan(#{self.loan_id} {self.borrower} {self.amount} "
            f"yes={self.yes_weight} no={self.no_weight} [{flags}])"
        )


class LoanRepository:
    """
    Store of loan records keyed by sequential id, plus the per-borrower index.

    Not thread-safe. LendingPlatform serializes all access.
    """

    def __init__(self):
        self._loans: Dict[int, Loan] = {}
        self._user_loans: UserLoanIndex = {}

    @property
    def loan_count(self) -> int:
        """Number of identifiers assigned so far (also the highest id)."""
        return len(self._loans)

    @property
    def next_loan_id(self) -> int:
        return len(self._loans) + 1

    def get(self, loan_id: int) -> Loan:
        """
        Return the loan with this id.

        Raises:
            InvalidLoanId: If loan_id is outside [1, loan_count]
        """
        if (
            not isinstance(loan_id, int) or isinstance(loan_id, bool)
            or not 1 <= loan_id <= self.loan_count
        ):
            raise InvalidLoanId(f"Loan id {loan_id!r} is not assigned (count={self.loan_count})")
        return self._loans[loan_id]

    def user_loans(self, borrower: Principal) -> List[int]:
        """Ids requested by borrower, in request order. Empty for unknown borrowers."""
        return list(self._user_loans.get(borrower, ()))

    def has_voted(self, loan_id: int, principal: Principal) -> bool:
        return self.get(loan_id).has_voted(principal)

    def list_loans(self) -> Iterator[Loan]:
        """Iterate all loans in id order."""
        for loan_id in range(1, self.loan_count + 1):
            yield self._loans[loan_id]

    def add(self, loan: Loan) -> int:
        """
        Store a newly requested loan and index it under its borrower.

        Raises:
            ValueError: If the loan does not carry the next sequential id
        """
        if loan.loan_id != self.next_loan_id:
            raise ValueError(
                f"Loan id {loan.loan_id} out of sequence, expected {self.next_loan_id}"
            )
        self._loans[loan.loan_id] = loan
        self._user_loans.setdefault(loan.borrower, []).append(loan.loan_id)
        return loan.loan_id

    def replace(self, loan: Loan) -> None:
        """
        Swap in a new record for an existing loan.

        Raises:
            InvalidLoanId: If the loan is unknown
            ValueError: If the borrower or amount changed, or a flag regressed
        """
        current = self.get(loan.loan_id)
        if loan.borrower != current.borrower or loan.amount != current.amount:
            raise ValueError(f"Loan {loan.loan_id}: borrower and amount are immutable")
        for flag in ('approved', 'funded', 'repaid'):
            if getattr(current, flag) and not getattr(loan, flag):
                raise ValueError(f"Loan {loan.loan_id}: {flag} cannot regress")
        self._loans[loan.loan_id] = loan

    def clone(self) -> LoanRepository:
        """Independent copy. Loan records are immutable so they are shared."""
        cloned = LoanRepository.__new__(LoanRepository)
        cloned._loans = dict(self._loans)
        cloned._user_loans = {b: list(ids) for b, ids in self._user_loans.items()}
        return cloned

    @classmethod
    def from_loans(cls, loans: List[Loan]) -> LoanRepository:
        """Rebuild a repository (and its index) from records in id order."""
        repo = cls()
        for loan in sorted(loans, key=lambda l: l.loan_id):
            repo.add(loan)
        return repo
