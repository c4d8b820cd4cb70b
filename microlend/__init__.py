"""
microlend - Quorum-Governed Micro-Lending Ledger

Borrowers request credit from a shared pool, a set of weighted governors votes
to approve, and approved loans are funded from and repaid into the pool
through an external value ledger.

Usage:
    from datetime import timedelta
    from microlend import FungibleToken, LendingPlatform

    token = FungibleToken("USDx", "Pool Dollar", issuer="treasury")
    platform = LendingPlatform(token, owner="admin", required_votes=3)
    token.mint("treasury", platform.pool_wallet, 150)

    platform.add_member("admin", "gov_a", 2)
    platform.add_member("admin", "gov_b", 2)

    loan_id = platform.request_loan("alice", 100, credit_score=72)
    platform.cast_vote(loan_id, "gov_a", True)
    platform.cast_vote(loan_id, "gov_b", True)      # 4 >= 3: approved

    platform.advance_time(platform.current_time + timedelta(days=3))
    platform.fund_loan(loan_id)                      # pool 150 -> 50

    token.approve("alice", platform.pool_wallet, 100)
    platform.repay_loan(loan_id, "alice")            # pool 50 -> 150
"""

# Core types
from .core import (
    ValueLedger,
    PlatformView,
    GovernanceConfig,
    Transfer,
    LoanStateChange,
    PendingEvent,
    PendingChange,
    Notification,
    EventType,
    LoanStatus,
    build_change,
    # Constants
    SYSTEM_WALLET,
    POOL_WALLET,
    MIN_VOTING_PERIOD,
    DEFAULT_VOTING_PERIOD,
    DEFAULT_REQUIRED_VOTES,
    MAX_CREDIT_SCORE,
    # Exceptions
    LendingError,
    InvalidInput,
    Unauthorized,
    StateConflict,
    TimingError,
    ExternalDependencyError,
    InvalidAmount,
    InvalidCreditScore,
    InvalidLoanId,
    InvalidWeight,
    InvalidThreshold,
    PeriodTooShort,
    NotAGovernor,
    NotBorrower,
    NotOwner,
    NotMinter,
    AlreadyVoted,
    AlreadyResolved,
    NotApproved,
    NotFundedOrAlreadyRepaid,
    DuplicateMember,
    NotAMember,
    ReentrantCall,
    VotingClosed,
    VotingStillOpen,
    TransferFailed,
    InsufficientPoolFunds,
    CorruptSnapshot,
)

# Records and stores
from .loans import Loan, LoanRepository
from .membership import DAOMember, MembershipRegistry

# Rules
from .voting import VoteTally, compute_vote, tally
from .lifecycle import (
    compute_loan_request,
    compute_funding,
    compute_repayment,
    validate_credit_score,
)

# Platform
from .platform import LendingPlatform

# Reference value ledger
from .pool_token import FungibleToken, TransferRecord

# Persistence
from .storage import snapshot, restore, save, load


__all__ = [
    # Core
    'ValueLedger', 'PlatformView', 'GovernanceConfig', 'Transfer',
    'LoanStateChange', 'PendingEvent', 'PendingChange', 'Notification',
    'EventType', 'LoanStatus', 'build_change',
    'SYSTEM_WALLET', 'POOL_WALLET', 'MIN_VOTING_PERIOD', 'DEFAULT_VOTING_PERIOD',
    'DEFAULT_REQUIRED_VOTES', 'MAX_CREDIT_SCORE',
    # Exceptions
    'LendingError', 'InvalidInput', 'Unauthorized', 'StateConflict', 'TimingError',
    'ExternalDependencyError', 'InvalidAmount', 'InvalidCreditScore', 'InvalidLoanId',
    'InvalidWeight', 'InvalidThreshold', 'PeriodTooShort', 'NotAGovernor', 'NotBorrower',
    'NotOwner', 'NotMinter', 'AlreadyVoted', 'AlreadyResolved', 'NotApproved',
    'NotFundedOrAlreadyRepaid', 'DuplicateMember', 'NotAMember', 'ReentrantCall',
    'VotingClosed', 'VotingStillOpen', 'TransferFailed', 'InsufficientPoolFunds',
    'CorruptSnapshot',
    # Records and stores
    'Loan', 'LoanRepository', 'DAOMember', 'MembershipRegistry',
    # Rules
    'VoteTally', 'compute_vote', 'tally',
    'compute_loan_request', 'compute_funding', 'compute_repayment', 'validate_credit_score',
    # Platform
    'LendingPlatform',
    # Value ledger
    'FungibleToken', 'TransferRecord',
    # Persistence
    'snapshot', 'restore', 'save', 'load',
]

__version__ = '1.0.0'
