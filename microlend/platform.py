"""
platform.py - Quorum-Governed Lending Platform

LendingPlatform is the central state holder. It is the only class that
mutates loan, membership, and governance state.

Key responsibilities:
    - Implements PlatformView for the pure rule functions in voting.py and lifecycle.py
    - Executes every public mutator as one all-or-nothing transaction: on any
      exception, all platform state is restored and no notification is published
    - Holds a platform-wide reentrancy guard across every operation that calls
      the value ledger, released on every exit path
    - Owner-gated administration (capability check at the start of each call)
    - Publishes one Notification per state change to subscribed observers

The emergency_withdraw escape hatch lets the owner move any asset held by the
pool without a vote. It is a single point of unilateral trust and must be
disclosed as such in any deployment.
"""

from __future__ import annotations
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterator, List, Optional, Tuple, Any

from .core import (
    # Types
    GovernanceConfig, Notification, PendingChange, PendingEvent, Principal,
    ValueLedger, EventType,
    # Constants
    DEFAULT_REQUIRED_VOTES, DEFAULT_VOTING_PERIOD, POOL_WALLET,
    # Exceptions
    InvalidAmount, NotOwner, ReentrantCall, TransferFailed,
    is_positive_int,
)
from .lifecycle import compute_funding, compute_loan_request, compute_repayment
from .loans import Loan, LoanRepository
from .membership import DAOMember, MembershipRegistry
from .voting import VoteTally, compute_vote, tally


Observer = Callable[[Notification], None]


class LendingPlatform:
    """
    Custodial micro-lending ledger governed by a weighted voting quorum.

    Implements the PlatformView protocol, so it can be handed directly to the
    rule functions, which read through it and never mutate it.

    Thread Safety:
        Not thread-safe. Operations are serialized by the caller; the
        reentrancy guard only protects against nested calls from the value
        ledger on the same thread.

    Example:
        token = FungibleToken("USDx", "Pool Dollar", issuer="treasury")
        platform = LendingPlatform(token, owner="admin", required_votes=3)
        token.mint("treasury", platform.pool_wallet, 150)

        platform.add_member("admin", "gov_a", 2)
        platform.add_member("admin", "gov_b", 2)
        loan_id = platform.request_loan("alice", 100, 72)
        platform.cast_vote(loan_id, "gov_a", True)
        platform.cast_vote(loan_id, "gov_b", True)     # approved

        platform.advance_time(platform.get_loan(loan_id).voting_deadline)
        platform.fund_loan(loan_id)                     # pool 150 -> 50
    """

    def __init__(
        self,
        value_ledger: ValueLedger,
        owner: Principal,
        pool_wallet: Principal = POOL_WALLET,
        voting_period: timedelta = DEFAULT_VOTING_PERIOD,
        required_votes: int = DEFAULT_REQUIRED_VOTES,
        initial_time: Optional[datetime] = None,
        verbose: bool = True,
    ):
        """
        Create a platform.

        Args:
            value_ledger: Custodian holding the pool's balance
            owner: Principal allowed to run administrative operations
            pool_wallet: Holder id of the pool on the value ledger
            voting_period: Initial voting window length (>= one day)
            required_votes: Initial weighted yes threshold (> 0)
            initial_time: Starting logical time (default: 1970-01-01)
            verbose: Print one line per committed notification and per rollback
        """
        if not owner or not owner.strip():
            raise ValueError("owner cannot be empty")
        if not pool_wallet or not pool_wallet.strip():
            raise ValueError("pool_wallet cannot be empty")
        self.value_ledger = value_ledger
        self._owner: Principal = owner
        self._pool_wallet: Principal = pool_wallet
        self.config = GovernanceConfig(voting_period=voting_period, required_votes=required_votes)
        self.loans = LoanRepository()
        self.members = MembershipRegistry()
        self.event_log: List[Notification] = []
        self.verbose = verbose
        self._current_time: datetime = initial_time or datetime(1970, 1, 1)
        self._observers: List[Observer] = []
        # Monotonic notification counter
        self._next_sequence: int = 0
        # Notifications raised by the running transaction, published on commit
        self._pending_events: List[Notification] = []
        # Reentrancy guard, held while the value ledger is being called
        self._entered: bool = False

    # ========================================================================
    # PlatformView PROTOCOL IMPLEMENTATION (read-only methods)
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        """Current logical time of the platform."""
        return self._current_time

    @property
    def owner(self) -> Principal:
        return self._owner

    @property
    def pool_wallet(self) -> Principal:
        return self._pool_wallet

    @property
    def voting_period(self) -> timedelta:
        return self.config.voting_period

    @property
    def required_votes(self) -> int:
        return self.config.required_votes

    @property
    def loan_count(self) -> int:
        return self.loans.loan_count

    def get_loan(self, loan_id: int) -> Loan:
        """
        Return the full loan record.

        Raises:
            InvalidLoanId: If loan_id is outside [1, loan_count]
        """
        return self.loans.get(loan_id)

    def get_user_loans(self, borrower: Principal) -> List[int]:
        """Ids of the loans borrower requested, oldest first."""
        return self.loans.user_loans(borrower)

    def has_voted(self, loan_id: int, principal: Principal) -> bool:
        """
        Raises:
            InvalidLoanId: If loan_id is outside [1, loan_count]
        """
        return self.loans.has_voted(loan_id, principal)

    def list_loans(self) -> Iterator[Loan]:
        return self.loans.list_loans()

    def get_tally(self, loan_id: int) -> VoteTally:
        return tally(self, loan_id)

    def is_member(self, principal: Principal) -> bool:
        return self.members.is_member(principal)

    def get_member(self, principal: Principal) -> DAOMember:
        return self.members.get_member(principal)

    def voting_weight(self, principal: Principal) -> int:
        return self.members.voting_weight(principal)

    def list_members(self) -> List[DAOMember]:
        return self.members.list_members()

    def pool_balance(self) -> int:
        """Balance of the pool as reported by the value ledger."""
        return self.value_ledger.balance_of(self._pool_wallet)

    # ========================================================================
    # TIME MANAGEMENT
    # ========================================================================

    def advance_time(self, new_time: datetime) -> None:
        """
        Advance the platform's logical clock. Time only moves forward.

        Raises:
            ValueError: If new_time is before the current time
        """
        if new_time < self._current_time:
            raise ValueError(
                f"Cannot move time backwards: {new_time} < {self._current_time}"
            )
        self._current_time = new_time

    # ========================================================================
    # OBSERVERS
    # ========================================================================

    def subscribe(self, observer: Observer) -> None:
        """Register a callback invoked with each committed Notification."""
        self._observers.append(observer)

    def unsubscribe(self, observer: Observer) -> None:
        self._observers.remove(observer)

    # ========================================================================
    # BORROWER AND GOVERNOR OPERATIONS (Mutating)
    # ========================================================================

    def request_loan(self, borrower: Principal, amount: int, credit_score: int) -> int:
        """
        Open a loan request and its voting window.

        Returns:
            The new loan id

        Raises:
            InvalidAmount, InvalidCreditScore, InsufficientPoolFunds
        """
        with self._transaction("request_loan"), self._nonreentrant():
            if borrower == self._pool_wallet:
                raise ValueError("The pool cannot borrow from itself")
            change = compute_loan_request(self, borrower, amount, credit_score)
            self._apply(change)
        return change.state_changes[0].new_state.loan_id

    def cast_vote(self, loan_id: int, voter: Principal, support: bool) -> Loan:
        """
        Record a governor's weighted vote.

        Returns:
            The updated loan record

        Raises:
            NotAGovernor, InvalidLoanId, VotingClosed, AlreadyVoted, AlreadyResolved
        """
        with self._transaction("cast_vote"):
            self._apply(compute_vote(self, loan_id, voter, bool(support)))
        return self.loans.get(loan_id)

    def fund_loan(self, loan_id: int) -> Loan:
        """
        Disburse an approved loan from the pool once its voting window closed.

        Raises:
            InvalidLoanId, NotApproved, VotingStillOpen, TransferFailed
        """
        with self._transaction("fund_loan"), self._nonreentrant():
            self._apply(compute_funding(self, loan_id))
        return self.loans.get(loan_id)

    def repay_loan(self, loan_id: int, caller: Principal) -> Loan:
        """
        Return a funded loan's amount to the pool. The borrower must have
        approved the pool as spender for at least the loan amount.

        Raises:
            InvalidLoanId, NotFundedOrAlreadyRepaid, NotBorrower, TransferFailed
        """
        with self._transaction("repay_loan"), self._nonreentrant():
            self._apply(compute_repayment(self, loan_id, caller))
        return self.loans.get(loan_id)

    # ========================================================================
    # ADMINISTRATION (Mutating, owner only)
    # ========================================================================

    def add_member(self, caller: Principal, principal: Principal, weight: int) -> DAOMember:
        """
        Raises:
            NotOwner, DuplicateMember, InvalidWeight
        """
        with self._transaction("add_member"):
            self._require_owner(caller)
            member = self.members.add_member(principal, weight, joined_at=self._current_time)
            self._emit(PendingEvent(EventType.MEMBER_ADDED, principal=principal, value=weight))
        return member

    def remove_member(self, caller: Principal, principal: Principal) -> DAOMember:
        """
        Erase a governor. Votes it already cast stay counted.

        Raises:
            NotOwner, NotAMember
        """
        with self._transaction("remove_member"):
            self._require_owner(caller)
            member = self.members.remove_member(principal)
            self._emit(PendingEvent(EventType.MEMBER_REMOVED, principal=principal))
        return member

    def set_voting_period(self, caller: Principal, duration: timedelta) -> None:
        """
        Change the window length for loans requested from now on.

        Raises:
            NotOwner, PeriodTooShort
        """
        with self._transaction("set_voting_period"):
            self._require_owner(caller)
            self.config = GovernanceConfig(
                voting_period=duration,
                required_votes=self.config.required_votes,
            )
            self._emit(PendingEvent(EventType.VOTING_PERIOD_UPDATED, value=duration))

    def set_required_votes(self, caller: Principal, threshold: int) -> None:
        """
        Change the weighted yes total that approves a loan.

        Raises:
            NotOwner, InvalidThreshold
        """
        with self._transaction("set_required_votes"):
            self._require_owner(caller)
            self.config = GovernanceConfig(
                voting_period=self.config.voting_period,
                required_votes=threshold,
            )
            self._emit(PendingEvent(EventType.REQUIRED_VOTES_UPDATED, value=threshold))

    def emergency_withdraw(
        self,
        caller: Principal,
        asset: ValueLedger,
        amount: int,
        destination: Principal,
    ) -> None:
        """
        Move any asset held by the pool to destination, without a vote.

        Raises:
            NotOwner, InvalidAmount, TransferFailed
        """
        with self._transaction("emergency_withdraw"), self._nonreentrant():
            self._require_owner(caller)
            if not is_positive_int(amount):
                raise InvalidAmount(f"withdrawal amount must be a positive integer, got {amount!r}")
            if not asset.transfer(self._pool_wallet, destination, amount):
                raise TransferFailed(
                    f"emergency withdrawal of {amount} to {destination} was refused"
                )
            self._emit(PendingEvent(
                EventType.EMERGENCY_WITHDRAWAL, principal=destination, value=amount,
            ))

    def transfer_ownership(self, caller: Principal, new_owner: Principal) -> None:
        """
        Raises:
            NotOwner, ValueError (empty new_owner)
        """
        with self._transaction("transfer_ownership"):
            self._require_owner(caller)
            if not new_owner or not new_owner.strip():
                raise ValueError("new_owner cannot be empty")
            self._owner = new_owner
            self._emit(PendingEvent(EventType.OWNERSHIP_TRANSFERRED, principal=new_owner))

    # ========================================================================
    # TRANSACTION EXECUTION
    # ========================================================================

    def _require_owner(self, caller: Principal) -> None:
        if caller != self._owner:
            raise NotOwner(f"{caller} is not the platform owner")

    def _capture(self) -> Tuple[Any, ...]:
        return (
            self.loans.clone(),
            self.members.clone(),
            self.config,
            self._owner,
            self._next_sequence,
        )

    def _restore(self, saved: Tuple[Any, ...]) -> None:
        (
            self.loans,
            self.members,
            self.config,
            self._owner,
            self._next_sequence,
        ) = saved

    @contextmanager
    def _transaction(self, operation: str) -> Iterator[None]:
        """
        Run the enclosed block all-or-nothing.

        On any exception every piece of platform state is restored from the
        entry snapshot, buffered notifications are discarded, and the
        exception propagates unchanged. On success the buffered notifications
        are logged and published.
        """
        if self._entered:
            raise ReentrantCall(
                f"{operation} called while a value transfer is outstanding"
            )
        saved = self._capture()
        self._pending_events = []
        try:
            yield
        except Exception as exc:
            self._restore(saved)
            self._pending_events = []
            if self.verbose:
                print(f"✗ ROLLED BACK {operation}: {type(exc).__name__}: {exc}")
            raise
        committed, self._pending_events = self._pending_events, []
        self._publish(committed)

    @contextmanager
    def _nonreentrant(self) -> Iterator[None]:
        """Hold the platform-wide reentrancy flag for the enclosed block."""
        if self._entered:
            raise ReentrantCall("platform is already executing a value transfer")
        self._entered = True
        try:
            yield
        finally:
            self._entered = False

    def _apply(self, change: PendingChange) -> None:
        """
        Apply a PendingChange: loan records first, then transfers, then events.

        Must run inside _transaction(); a refused transfer raises TransferFailed
        and the surrounding transaction restores the loan records.
        """
        for sc in change.state_changes:
            if sc.old_state is None:
                self.loans.add(sc.new_state)
            else:
                self.loans.replace(sc.new_state)

        for transfer in change.transfers:
            if transfer.spender is not None:
                ok = self.value_ledger.transfer_from(
                    transfer.spender, transfer.source, transfer.dest, transfer.amount
                )
            else:
                ok = self.value_ledger.transfer(transfer.source, transfer.dest, transfer.amount)
            if not ok:
                raise TransferFailed(f"{transfer!r} refused by value ledger ({transfer.reference})")

        for event in change.events:
            self._emit(event)

    def _emit(self, event: PendingEvent) -> None:
        notification = Notification(
            event_type=event.event_type,
            timestamp=self._current_time,
            sequence_number=self._next_sequence,
            loan_id=event.loan_id,
            principal=event.principal,
            value=event.value,
        )
        self._next_sequence += 1
        self._pending_events.append(notification)

    def _publish(self, notifications: List[Notification]) -> None:
        """
        Log a committed batch, then deliver it to every observer.

        The whole batch reaches event_log before any observer runs. An
        observer error does not stop delivery; the first one is re-raised
        once every notification has been offered to every observer.
        """
        for notification in notifications:
            self.event_log.append(notification)
            if self.verbose:
                print(f"✓ {notification!r}")

        first_error: Optional[Exception] = None
        for notification in notifications:
            for observer in list(self._observers):
                try:
                    observer(notification)
                except Exception as exc:
                    if first_error is None:
                        first_error = exc
        if first_error is not None:
            raise first_error

    # ========================================================================
    # DIAGNOSTICS
    # ========================================================================

    def notifications_for(self, loan_id: int) -> List[Notification]:
        """All published notifications about one loan, in order."""
        return [n for n in self.event_log if n.loan_id == loan_id]

    def summary(self) -> Dict[str, Any]:
        """Counts and governance parameters, for dashboards and demos."""
        now = self._current_time
        by_status: Dict[str, int] = {}
        for loan in self.loans.list_loans():
            status = loan.status_at(now).value
            by_status[status] = by_status.get(status, 0) + 1
        return {
            'owner': self._owner,
            'pool_balance': self.pool_balance(),
            'loan_count': self.loans.loan_count,
            'loans_by_status': by_status,
            'members': len(self.members),
            'total_voting_weight': self.members.total_voting_weight(),
            'voting_period': self.config.voting_period,
            'required_votes': self.config.required_votes,
        }
