#!/usr/bin/env python3
"""
demo.py - Interactive Tutorial: A Quorum-Governed Lending Pool, Step by Step

Each step builds on the previous one. Press Enter to advance.

WHAT YOU'LL LEARN:
  1-3:   Setup       - The pool token, the platform, the governors
  4-7:   Lifecycle   - Request, weighted votes, funding after the window, repayment
  8-10:  Safeguards  - Rejections, rollback on a refused transfer, advisory rejection
  11-12: Operations  - Governance updates, snapshots

Run:
    python demo.py           # Interactive mode (press Enter for each step)
    python demo.py --quick   # Run all steps without pausing
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
import sys
import tempfile

from microlend import (
    FungibleToken, LendingPlatform, LendingError,
    InvalidCreditScore, InsufficientPoolFunds, VotingStillOpen, TransferFailed,
    save, load,
)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Configuration for the tutorial. Modify these to experiment."""
    start_time: datetime = datetime(2025, 1, 1, 9, 0, 0)
    owner: str = "admin"
    issuer: str = "treasury"
    pool_funding: int = 150
    loan_amount: int = 100
    credit_score: int = 72
    required_votes: int = 3
    voting_period: timedelta = timedelta(days=3)


CONFIG = DemoConfig()

QUICK_MODE = "--quick" in sys.argv


def wait_for_enter():
    """Pause for user input unless in quick mode."""
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def section_header(text: str):
    print(f"\n--- {text} ---\n")


def show_loan(platform: LendingPlatform, loan_id: int):
    loan = platform.get_loan(loan_id)
    print(f"  {loan!r}")
    print(f"  status:   {loan.status_at(platform.current_time).value}")
    print(f"  deadline: {loan.voting_deadline}")
    print(f"  voters:   {sorted(loan.voters)}")


# ============================================================================
# PHASE 1: SETUP (Steps 1-3)
# ============================================================================

def step_01_token():
    step_header(1, "The Pool Token",
        "Value lives on an external ledger; the platform only asks it to move funds.")

    print(">>> token = FungibleToken('USDx', 'Pool Dollar', issuer='treasury')")
    token = FungibleToken("USDx", "Pool Dollar", issuer=CONFIG.issuer, verbose=True)

    print(f"Registered wallets: {sorted(token.list_wallets())}")
    print(f"Total supply:       {token.total_supply()}")
    return token


def step_02_platform(token: FungibleToken):
    step_header(2, "The Lending Platform",
        "One platform object holds loans, governors and governance parameters.")

    platform = LendingPlatform(
        token,
        owner=CONFIG.owner,
        voting_period=CONFIG.voting_period,
        required_votes=CONFIG.required_votes,
        initial_time=CONFIG.start_time,
        verbose=True,
    )
    print(f">>> token.mint('treasury', '{platform.pool_wallet}', {CONFIG.pool_funding})")
    token.mint(CONFIG.issuer, platform.pool_wallet, CONFIG.pool_funding)

    section_header("Initial State")
    for key, value in platform.summary().items():
        print(f"  {key:20s} {value}")
    return platform


def step_03_governors(platform: LendingPlatform):
    step_header(3, "Governors",
        "Only the owner adds governors. Each vote counts with the governor's weight.")

    platform.add_member(CONFIG.owner, "gov_a", 2)
    platform.add_member(CONFIG.owner, "gov_b", 2)

    section_header("Only the owner may administer")
    try:
        platform.add_member("mallory", "mallory", 100)
    except LendingError as exc:
        print(f"  Rejected: {type(exc).__name__}: {exc}")

    print(f"\n  Total voting weight: {platform.members.total_voting_weight()}")
    print(f"  Required votes:      {platform.required_votes}")


# ============================================================================
# PHASE 2: LIFECYCLE (Steps 4-7)
# ============================================================================

def step_04_request(platform: LendingPlatform) -> int:
    step_header(4, "Requesting a Loan",
        "A request opens a voting window. The pool must cover the amount right now.")

    loan_id = platform.request_loan("alice", CONFIG.loan_amount, CONFIG.credit_score)
    show_loan(platform, loan_id)
    print("""
    The pool check is not a reservation: other approved loans can still drain
    the pool before this one is funded.
    """)
    return loan_id


def step_05_votes(platform: LendingPlatform, loan_id: int):
    step_header(5, "Weighted Voting",
        "Approval is reached when the weighted yes total meets the threshold.")

    section_header("gov_a votes yes (2 < 3)")
    platform.cast_vote(loan_id, "gov_a", True)
    show_loan(platform, loan_id)

    section_header("gov_b votes yes (4 >= 3)")
    platform.cast_vote(loan_id, "gov_b", True)
    show_loan(platform, loan_id)


def step_06_fund(platform: LendingPlatform, token: FungibleToken, loan_id: int):
    step_header(6, "Funding After the Window",
        "Even an approved loan waits for its voting window to close.")

    try:
        platform.fund_loan(loan_id)
    except VotingStillOpen as exc:
        print(f"  Too early: {exc}")

    platform.advance_time(platform.get_loan(loan_id).voting_deadline)
    print(f"\n>>> advance_time -> {platform.current_time}")
    platform.fund_loan(loan_id)

    print(f"\n  Pool balance:  {platform.pool_balance()}")
    print(f"  Alice balance: {token.balance_of('alice')}")


def step_07_repay(platform: LendingPlatform, token: FungibleToken, loan_id: int):
    step_header(7, "Repayment",
        "The borrower lets the pool pull the amount back; nobody else may repay.")

    token.approve("alice", platform.pool_wallet, CONFIG.loan_amount)
    platform.repay_loan(loan_id, "alice")

    print(f"\n  Pool balance:  {platform.pool_balance()}")
    print(f"  Double entry:  {token.verify_double_entry()}")
    show_loan(platform, loan_id)


# ============================================================================
# PHASE 3: SAFEGUARDS (Steps 8-10)
# ============================================================================

def step_08_rejections(platform: LendingPlatform):
    step_header(8, "Rejected Requests",
        "Bad input fails before any identifier is assigned.")

    before = platform.loan_count
    for amount, score in ((10, 0), (10, 101), (10_000, 50)):
        try:
            platform.request_loan("bob", amount, score)
        except (InvalidCreditScore, InsufficientPoolFunds) as exc:
            print(f"  request({amount}, {score}) -> {type(exc).__name__}")
    print(f"\n  loan_count unchanged: {before} -> {platform.loan_count}")


def step_09_rollback(platform: LendingPlatform, token: FungibleToken):
    step_header(9, "All or Nothing",
        "A refused transfer undoes the flag that was already written.")

    loan_id = platform.request_loan("bob", 100, 64)
    platform.cast_vote(loan_id, "gov_a", True)
    platform.cast_vote(loan_id, "gov_b", True)
    platform.advance_time(platform.get_loan(loan_id).voting_deadline)

    print(">>> owner moves funds out of the pool first")
    platform.emergency_withdraw(CONFIG.owner, token, 100, "vault")

    try:
        platform.fund_loan(loan_id)
    except TransferFailed as exc:
        print(f"\n  {type(exc).__name__}: {exc}")
    show_loan(platform, loan_id)

    token.transfer("vault", platform.pool_wallet, 100)


def step_10_advisory_rejection(platform: LendingPlatform):
    step_header(10, "Advisory Rejection",
        "Enough no-votes only notify. Voting continues and a yes majority still wins.")

    platform.add_member(CONFIG.owner, "gov_c", 3)
    loan_id = platform.request_loan("carol", 20, 55)
    platform.cast_vote(loan_id, "gov_a", False)
    platform.cast_vote(loan_id, "gov_b", False)
    platform.cast_vote(loan_id, "gov_c", True)
    show_loan(platform, loan_id)


# ============================================================================
# PHASE 4: OPERATIONS (Steps 11-12)
# ============================================================================

def step_11_governance(platform: LendingPlatform):
    step_header(11, "Governance Updates",
        "Parameter changes apply to later loans and later votes.")

    platform.set_voting_period(CONFIG.owner, timedelta(days=5))
    platform.set_required_votes(CONFIG.owner, 4)
    try:
        platform.set_voting_period(CONFIG.owner, timedelta(hours=12))
    except LendingError as exc:
        print(f"  Rejected: {type(exc).__name__}")


def step_12_snapshot(platform: LendingPlatform, token: FungibleToken):
    step_header(12, "Snapshots",
        "Loans, governors and parameters survive a restart.")

    with tempfile.TemporaryDirectory() as tmp:
        path = save(platform, Path(tmp) / "platform.json")
        print(f"  Saved to {path.name} ({path.stat().st_size} bytes)")
        restored = load(path, token, verbose=False)

    print(f"  Restored loans:   {restored.loan_count}")
    print(f"  Restored members: {[m.principal for m in restored.list_members()]}")
    print(f"  Same records:     {list(restored.list_loans()) == list(platform.list_loans())}")


def main():
    """Run the complete tutorial."""
    print("=" * 70)
    print("       MICROLEND - INTERACTIVE TUTORIAL")
    print("=" * 70)

    if QUICK_MODE:
        print("Running in QUICK mode (no pauses)")
    else:
        print("Running in INTERACTIVE mode (press Enter to advance)")
    wait_for_enter()

    token = step_01_token()
    wait_for_enter()
    platform = step_02_platform(token)
    wait_for_enter()
    step_03_governors(platform)
    wait_for_enter()

    loan_id = step_04_request(platform)
    wait_for_enter()
    step_05_votes(platform, loan_id)
    wait_for_enter()
    step_06_fund(platform, token, loan_id)
    wait_for_enter()
    step_07_repay(platform, token, loan_id)
    wait_for_enter()

    step_08_rejections(platform)
    wait_for_enter()
    step_09_rollback(platform, token)
    wait_for_enter()
    step_10_advisory_rejection(platform)
    wait_for_enter()

    step_11_governance(platform)
    wait_for_enter()
    step_12_snapshot(platform, token)

    print("\n" + "=" * 70)
    print("       TUTORIAL COMPLETE!")
    print("=" * 70)
    print("""
    Next steps:
      - See microlend/voting.py and microlend/lifecycle.py for the rules
      - Run tests: pytest tests/
    """)


if __name__ == "__main__":
    main()
