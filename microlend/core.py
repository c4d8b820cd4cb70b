"""
Core types and pure helpers for the quorum-governed lending platform.

This module provides the foundational data structures and protocols:
1. Protocols: ValueLedger (external custodian) and PlatformView (read-only platform access)
2. Immutable data structures: Transfer, LoanStateChange, PendingEvent, PendingChange, Notification
3. Exceptions: LendingError and its categorized subclasses
4. Governance configuration: GovernanceConfig

Rule functions (voting, lifecycle) take a PlatformView and return a PendingChange.
They never mutate platform state; only LendingPlatform applies changes.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import (
    Any, Dict, List, Optional, Protocol, Tuple, TYPE_CHECKING, runtime_checkable,
)

if TYPE_CHECKING:
    from .loans import Loan


# ============================================================================
# CONSTANTS
# ============================================================================

# Reserved wallet for issuance in the reference value ledger.
# The system wallet is exempt from balance validation and can go negative.
SYSTEM_WALLET = "system"

# Default wallet holding the platform's lending pool.
POOL_WALLET = "pool"

# Governance floor: voting windows shorter than one day are rejected.
MIN_VOTING_PERIOD = timedelta(days=1)

DEFAULT_VOTING_PERIOD = timedelta(days=3)
DEFAULT_REQUIRED_VOTES = 3

# Credit scores are accepted in the half-open interval (0, MAX_CREDIT_SCORE].
MAX_CREDIT_SCORE = 100


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Identity of a borrower, governor, owner, or wallet.
Principal = str

# Mapping from borrower to the ordered ids of the loans they requested.
UserLoanIndex = Dict[str, List[int]]


# ============================================================================
# ENUMS
# ============================================================================

class EventType(Enum):
    """Kinds of notification published by the platform, one per state change."""
    LOAN_REQUESTED = "loan_requested"
    VOTE_CAST = "vote_cast"
    LOAN_APPROVED = "loan_approved"
    LOAN_REJECTED = "loan_rejected"       # Advisory only, sets no flag
    LOAN_FUNDED = "loan_funded"
    LOAN_REPAID = "loan_repaid"
    MEMBER_ADDED = "member_added"
    MEMBER_REMOVED = "member_removed"
    VOTING_PERIOD_UPDATED = "voting_period_updated"
    REQUIRED_VOTES_UPDATED = "required_votes_updated"
    EMERGENCY_WITHDRAWAL = "emergency_withdrawal"
    OWNERSHIP_TRANSFERRED = "ownership_transferred"


class LoanStatus(str, Enum):
    """Display status of a loan. Derived from flags, never used for transitions."""
    VOTING = "voting"       # Window open, not yet approved
    APPROVED = "approved"   # Quorum reached, awaiting funding
    FUNDED = "funded"       # Disbursed to borrower
    REPAID = "repaid"       # Returned to pool
    EXPIRED = "expired"     # Window closed without approval


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LendingError(Exception):
    """Base exception for all platform errors. Raising one rolls back the operation."""
    pass


# --- Categories -------------------------------------------------------------

class InvalidInput(LendingError):
    """A caller-supplied value is out of range."""
    pass


class Unauthorized(LendingError):
    """The caller lacks the capability required by the operation."""
    pass


class StateConflict(LendingError):
    """The operation is not legal in the current state."""
    pass


class TimingError(LendingError):
    """The operation is not legal at the current time."""
    pass


class ExternalDependencyError(LendingError):
    """The value ledger could not satisfy the operation."""
    pass


# --- Invalid input ----------------------------------------------------------

class InvalidAmount(InvalidInput):
    """Raised when a loan amount is not a positive integer."""
    pass


class InvalidCreditScore(InvalidInput):
    """Raised when a credit score falls outside (0, MAX_CREDIT_SCORE]."""
    pass


class InvalidLoanId(InvalidInput):
    """Raised when a loan id is outside the range of assigned identifiers."""
    pass


class InvalidWeight(InvalidInput):
    """Raised when a governor's voting weight is not a positive integer."""
    pass


class InvalidThreshold(InvalidInput):
    """Raised when the required-votes threshold is not a positive integer."""
    pass


class PeriodTooShort(InvalidInput):
    """Raised when a voting period is shorter than MIN_VOTING_PERIOD."""
    pass


# --- Authorization ----------------------------------------------------------

class NotAGovernor(Unauthorized):
    """Raised when a non-member attempts to vote."""
    pass


class NotBorrower(Unauthorized):
    """Raised when someone other than the borrower attempts to repay."""
    pass


class NotOwner(Unauthorized):
    """Raised when a non-owner invokes an administrative operation."""
    pass


class NotMinter(Unauthorized):
    """Raised when someone other than the issuer attempts to mint."""
    pass


# --- State conflicts --------------------------------------------------------

class AlreadyVoted(StateConflict):
    """Raised when a governor votes twice on the same loan."""
    pass


class AlreadyResolved(StateConflict):
    """Raised when voting on a loan that is already approved or funded."""
    pass


class NotApproved(StateConflict):
    """Raised when funding a loan that is not approved or is already funded."""
    pass


class NotFundedOrAlreadyRepaid(StateConflict):
    """Raised when repaying a loan that was never funded or is already repaid."""
    pass


class DuplicateMember(StateConflict):
    """Raised when adding a principal who is already a governor."""
    pass


class NotAMember(StateConflict):
    """Raised when removing a principal who is not a governor."""
    pass


class ReentrantCall(StateConflict):
    """Raised when a platform mutator is entered while a value transfer is outstanding."""
    pass


# --- Timing -----------------------------------------------------------------

class VotingClosed(TimingError):
    """Raised when voting at or after the loan's voting deadline."""
    pass


class VotingStillOpen(TimingError):
    """Raised when funding a loan before its voting deadline."""
    pass


# --- External dependency ----------------------------------------------------

class TransferFailed(ExternalDependencyError):
    """Raised when the value ledger reports a failed transfer."""
    pass


class InsufficientPoolFunds(ExternalDependencyError):
    """Raised when the pool balance is below the requested loan amount."""
    pass


# --- Persistence ------------------------------------------------------------

class CorruptSnapshot(LendingError):
    """Raised when a persisted snapshot fails its checksum or invariant checks."""
    pass


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class ValueLedger(Protocol):
    """
    Interface to the external custodian of fungible value.

    Every call is atomic: it either applies fully and returns True, or has no
    effect and returns False. The platform trusts the custodian for this; it
    owns no platform state.
    """

    def balance_of(self, holder: Principal) -> int:
        """Return the balance held by holder (0 if unknown)."""
        ...

    def transfer(self, sender: Principal, to: Principal, amount: int) -> bool:
        """Move amount from sender to to."""
        ...

    def transfer_from(
        self, spender: Principal, source: Principal, dest: Principal, amount: int
    ) -> bool:
        """Move amount from source to dest, drawing on spender's allowance."""
        ...

    def mint(self, minter: Principal, to: Principal, amount: int) -> bool:
        """Issue new value to to."""
        ...


class PlatformView(Protocol):
    """
    Read-only interface to platform state.

    Rule functions accepting a PlatformView declare their read-only intent.
    LendingPlatform implements this protocol; tests may supply lighter fakes.
    """

    @property
    def current_time(self) -> datetime:
        ...

    @property
    def required_votes(self) -> int:
        ...

    @property
    def voting_period(self) -> timedelta:
        ...

    @property
    def pool_wallet(self) -> Principal:
        ...

    @property
    def loan_count(self) -> int:
        ...

    def get_loan(self, loan_id: int) -> 'Loan':
        """Return the loan record, raising InvalidLoanId for unassigned ids."""
        ...

    def is_member(self, principal: Principal) -> bool:
        ...

    def voting_weight(self, principal: Principal) -> int:
        ...

    def pool_balance(self) -> int:
        ...


# ============================================================================
# VALIDATION HELPERS
# ============================================================================

def is_positive_int(value: Any) -> bool:
    """True for ints greater than zero. Booleans are not amounts."""
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _require_principal(value: Any, label: str) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{label} cannot be empty")


# ============================================================================
# GOVERNANCE CONFIGURATION
# ============================================================================

@dataclass(frozen=True, slots=True)
class GovernanceConfig:
    """
    Runtime governance parameters, replaced wholesale on each admin update.

    Attributes:
        voting_period: Length of the voting window opened by each loan request
        required_votes: Weighted yes total that approves a loan
    """
    voting_period: timedelta = DEFAULT_VOTING_PERIOD
    required_votes: int = DEFAULT_REQUIRED_VOTES

    def __post_init__(self):
        if not isinstance(self.voting_period, timedelta):
            raise PeriodTooShort(
                f"voting_period must be a timedelta, got {type(self.voting_period)}"
            )
        if self.voting_period < MIN_VOTING_PERIOD:
            raise PeriodTooShort(
                f"voting period {self.voting_period} is below the minimum {MIN_VOTING_PERIOD}"
            )
        if not is_positive_int(self.required_votes):
            raise InvalidThreshold(
                f"required_votes must be a positive integer, got {self.required_votes!r}"
            )


# ============================================================================
# CHANGE DESCRIPTIONS (intent)
# ============================================================================

@dataclass(frozen=True, slots=True)
class Transfer:
    """
    A single movement of pool value requested by a rule function.

    Attributes:
        amount: Quantity to move (positive integer)
        source: Holder debited
        dest: Holder credited
        reference: Human-readable reason, e.g. "fund_loan_3"
        spender: When set, the move draws on spender's allowance from source
    """
    amount: int
    source: Principal
    dest: Principal
    reference: str
    spender: Optional[Principal] = None

    def __post_init__(self):
        _require_principal(self.source, "Transfer source")
        _require_principal(self.dest, "Transfer dest")
        if not self.reference or not self.reference.strip():
            raise ValueError("Transfer reference cannot be empty")
        if not is_positive_int(self.amount):
            raise ValueError(f"Transfer amount must be a positive integer, got {self.amount!r}")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        via = f" via {self.spender}" if self.spender else ""
        return f"Transfer({self.amount}: {self.source}→{self.dest}{via})"


@dataclass(frozen=True, slots=True)
class LoanStateChange:
    """
    Record of a loan record change, with complete before/after snapshots.

    old_state is None when the change creates the loan.
    """
    loan_id: int
    old_state: Optional['Loan']
    new_state: 'Loan'

    def changed_fields(self) -> Dict[str, Tuple[Any, Any]]:
        """
        Compute fields that differ between old and new state.

        Returns:
            Dict mapping field name to (old_value, new_value) tuples.
        """
        new = self.new_state.to_dict()
        old = self.old_state.to_dict() if self.old_state is not None else {}
        return {
            key: (old.get(key), new.get(key))
            for key in new
            if old.get(key) != new.get(key)
        }


@dataclass(frozen=True, slots=True)
class PendingEvent:
    """A notification requested by a rule function, before it is stamped."""
    event_type: EventType
    loan_id: Optional[int] = None
    principal: Optional[Principal] = None
    value: Any = None


@dataclass(frozen=True, slots=True)
class PendingChange:
    """
    Everything one operation wants to do - represents INTENT.

    Applied by LendingPlatform in order: state changes, then transfers, then
    events. If any transfer fails the whole change is rolled back.
    """
    state_changes: Tuple[LoanStateChange, ...] = ()
    transfers: Tuple[Transfer, ...] = ()
    events: Tuple[PendingEvent, ...] = ()

    def is_empty(self) -> bool:
        return not self.state_changes and not self.transfers and not self.events

    def __repr__(self) -> str:
        return (
            f"PendingChange({len(self.state_changes)} changes, "
            f"{len(self.transfers)} transfers, {len(self.events)} events)"
        )


def build_change(
    state_changes: Optional[List[LoanStateChange]] = None,
    transfers: Optional[List[Transfer]] = None,
    events: Optional[List[PendingEvent]] = None,
) -> PendingChange:
    """Build a PendingChange from lists. The standard way rule functions return."""
    return PendingChange(
        state_changes=tuple(state_changes or ()),
        transfers=tuple(transfers or ()),
        events=tuple(events or ()),
    )


# ============================================================================
# NOTIFICATIONS (fact)
# ============================================================================

@dataclass(frozen=True, slots=True)
class Notification:
    """
    A published, immutable record of one platform state change.

    Attributes:
        event_type: What happened
        timestamp: Platform time at which the operation committed
        sequence_number: Monotonic within the platform
        loan_id: Affected loan, if any
        principal: Affected principal (borrower, voter, member, destination)
        value: New value where relevant (amount, weight, period, threshold)
    """
    event_type: EventType
    timestamp: datetime
    sequence_number: int
    loan_id: Optional[int] = None
    principal: Optional[Principal] = None
    value: Any = None

    def __repr__(self) -> str:
        parts = [f"#{self.sequence_number}", self.event_type.value]
        if self.loan_id is not None:
            parts.append(f"loan={self.loan_id}")
        if self.principal is not None:
            parts.append(f"principal={self.principal}")
        if self.value is not None:
            parts.append(f"value={self.value}")
        return f"Notification({', '.join(parts)})"
