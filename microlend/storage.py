"""
storage.py - Durable Snapshots of Platform State

Serializes the loan repository, the per-borrower index, the membership
registry, governance configuration, owner, clock and notification counter to
JSON, and restores them into a new LendingPlatform.

Encoding:
    - datetimes: ISO-8601 strings
    - timedeltas: total seconds (float)
    - voters: sorted lists
    - checksum: sha256 over the canonical JSON of the payload (sorted keys,
      no whitespace), so semantically identical states hash identically

Loading verifies the checksum and re-checks the data-model invariants before
any platform object is built:
    - loan ids are exactly 1..loan_count
    - funded implies approved, repaid implies funded
    - the per-borrower index matches the loans' borrowers in id order
    - member weights are positive

The notification log is not persisted; only the counter is, so sequence
numbers stay monotonic across restarts.
"""

from __future__ import annotations
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Union
import hashlib
import json
import os
import tempfile

from .core import CorruptSnapshot, GovernanceConfig, LendingError, ValueLedger
from .loans import Loan, LoanRepository
from .membership import DAOMember, MembershipRegistry
from .platform import LendingPlatform


SNAPSHOT_VERSION = 1


# ============================================================================
# ENCODING
# ============================================================================

def _encode_loan(loan: Loan) -> Dict[str, Any]:
    data = loan.to_dict()
    data['voting_deadline'] = loan.voting_deadline.isoformat()
    data['requested_at'] = loan.requested_at.isoformat()
    return data


def _decode_loan(data: Dict[str, Any]) -> Loan:
    return Loan(
        loan_id=data['loan_id'],
        borrower=data['borrower'],
        amount=data['amount'],
        credit_score=data['credit_score'],
        voting_deadline=datetime.fromisoformat(data['voting_deadline']),
        requested_at=datetime.fromisoformat(data['requested_at']),
        yes_weight=data['yes_weight'],
        no_weight=data['no_weight'],
        approved=data['approved'],
        funded=data['funded'],
        repaid=data['repaid'],
        voters=frozenset(data['voters']),
    )


def _encode_member(member: DAOMember) -> Dict[str, Any]:
    return {
        'principal': member.principal,
        'voting_weight': member.voting_weight,
        'joined_at': member.joined_at.isoformat() if member.joined_at else None,
    }


def _decode_member(data: Dict[str, Any]) -> DAOMember:
    joined_at = data.get('joined_at')
    return DAOMember(
        principal=data['principal'],
        voting_weight=data['voting_weight'],
        joined_at=datetime.fromisoformat(joined_at) if joined_at else None,
    )


def _canonical_json(payload: Dict[str, Any]) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"))


def compute_checksum(payload: Dict[str, Any]) -> str:
    """sha256 of the canonical JSON form of payload."""
    return hashlib.sha256(_canonical_json(payload).encode()).hexdigest()


# ============================================================================
# SNAPSHOT
# ============================================================================

def snapshot(platform: LendingPlatform) -> Dict[str, Any]:
    """
    Capture platform state as a JSON-ready dict.

    Returns:
        {'version', 'payload', 'checksum'} where payload holds all durable state
    """
    payload = {
        'owner': platform.owner,
        'pool_wallet': platform.pool_wallet,
        'current_time': platform.current_time.isoformat(),
        'voting_period_seconds': platform.voting_period.total_seconds(),
        'required_votes': platform.required_votes,
        'next_sequence': platform._next_sequence,
        'loan_count': platform.loan_count,
        'loans': [_encode_loan(loan) for loan in platform.list_loans()],
        'user_loans': {
            borrower: platform.get_user_loans(borrower)
            for borrower in sorted({loan.borrower for loan in platform.list_loans()})
        },
        'members': [_encode_member(m) for m in platform.list_members()],
    }
    return {
        'version': SNAPSHOT_VERSION,
        'payload': payload,
        'checksum': compute_checksum(payload),
    }


def _verify(document: Dict[str, Any]) -> Dict[str, Any]:
    if document.get('version') != SNAPSHOT_VERSION:
        raise CorruptSnapshot(f"Unsupported snapshot version {document.get('version')!r}")
    payload = document.get('payload')
    if not isinstance(payload, dict):
        raise CorruptSnapshot("Snapshot has no payload")
    if compute_checksum(payload) != document.get('checksum'):
        raise CorruptSnapshot("Snapshot checksum mismatch")
    return payload


def _check_invariants(loans: List[Loan], loan_count: Any, user_loans: Any) -> None:
    ids = [loan.loan_id for loan in loans]
    if ids != list(range(1, len(loans) + 1)) or loan_count != len(loans):
        raise CorruptSnapshot(f"Loan ids are not sequential from 1: {ids}")

    expected_index: Dict[str, List[int]] = {}
    for loan in loans:
        expected_index.setdefault(loan.borrower, []).append(loan.loan_id)
    if user_loans != expected_index:
        raise CorruptSnapshot("Per-borrower loan index does not match loan records")


def restore(
    document: Dict[str, Any],
    value_ledger: ValueLedger,
    verbose: bool = True,
) -> LendingPlatform:
    """
    Build a LendingPlatform from a snapshot document.

    Raises:
        CorruptSnapshot: If the checksum, encoding, or invariants do not hold
    """
    payload = _verify(document)
    try:
        loans = [_decode_loan(item) for item in payload['loans']]
        members = [_decode_member(item) for item in payload['members']]
        config = GovernanceConfig(
            voting_period=timedelta(seconds=payload['voting_period_seconds']),
            required_votes=payload['required_votes'],
        )
        current_time = datetime.fromisoformat(payload['current_time'])
        owner = payload['owner']
        pool_wallet = payload['pool_wallet']
        next_sequence = payload['next_sequence']
        loan_count = payload['loan_count']
        user_loans = payload['user_loans']
    except (KeyError, TypeError, ValueError, LendingError) as exc:
        raise CorruptSnapshot(f"Snapshot field is invalid: {exc}") from exc

    for name, value in (('owner', owner), ('pool_wallet', pool_wallet)):
        if not isinstance(value, str) or not value.strip():
            raise CorruptSnapshot(f"Snapshot {name} must be a non-empty string, got {value!r}")
    if isinstance(next_sequence, bool) or not isinstance(next_sequence, int) or next_sequence < 0:
        raise CorruptSnapshot(
            f"Snapshot next_sequence must be a non-negative int, got {next_sequence!r}"
        )
    _check_invariants(loans, loan_count, user_loans)

    platform = LendingPlatform(
        value_ledger,
        owner=owner,
        pool_wallet=pool_wallet,
        voting_period=config.voting_period,
        required_votes=config.required_votes,
        initial_time=current_time,
        verbose=verbose,
    )
    try:
        platform.loans = LoanRepository.from_loans(loans)
        platform.members = MembershipRegistry.from_members(members)
    except (ValueError, LendingError) as exc:
        raise CorruptSnapshot(f"Snapshot records are inconsistent: {exc}") from exc
    platform._next_sequence = next_sequence
    return platform


def save(platform: LendingPlatform, path: Union[str, Path]) -> Path:
    """
    Write a snapshot of platform to path as JSON. Returns the path.

    The document is written to a temporary file in the same directory and
    moved over path in one step, so an interrupted save leaves the previous
    snapshot intact.
    """
    path = Path(path)
    text = json.dumps(snapshot(platform), indent=2, sort_keys=True)
    tmp = tempfile.NamedTemporaryFile(
        "w", dir=path.parent, prefix=f".{path.name}.", suffix=".tmp", delete=False
    )
    try:
        with tmp:
            tmp.write(text)
            tmp.flush()
            os.fsync(tmp.fileno())
        os.replace(tmp.name, path)
    except OSError:
        os.unlink(tmp.name)
        raise
    return path


def load(
    path: Union[str, Path],
    value_ledger: ValueLedger,
    verbose: bool = True,
) -> LendingPlatform:
    """
    Read a snapshot written by save().

    Raises:
        CorruptSnapshot: If the file is not valid JSON or fails verification
    """
    try:
        document = json.loads(Path(path).read_text())
    except json.JSONDecodeError as exc:
        raise CorruptSnapshot(f"Snapshot is not valid JSON: {exc}") from exc
    return restore(document, value_ledger, verbose=verbose)
