"""
pool_token.py - Reference Fungible Value Ledger

An in-memory, single-asset, integer-denominated balance ledger that satisfies
the ValueLedger protocol. The lending platform depends only on the protocol;
this class exists so the platform can be run and tested end to end.

Key properties:
    - Double-entry: issuance debits SYSTEM_WALLET, so the sum of all balances
      (system wallet included) is always zero
    - Atomic: a transfer either applies fully and returns True, or returns
      False with no side effect
    - Always logs: every applied move is appended to transfer_log

Thread Safety:
    Not thread-safe. Each thread should maintain its own instance.
"""

from __future__ import annotations
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set, Tuple

from .core import NotMinter, Principal, SYSTEM_WALLET, is_positive_int


@dataclass(frozen=True, slots=True)
class TransferRecord:
    """
    An applied move of value.

    Attributes:
        sequence_number: Monotonic within the token
        source: Holder debited (SYSTEM_WALLET for issuance)
        dest: Holder credited
        amount: Quantity moved
        spender: Principal whose allowance was used, if any
    """
    sequence_number: int
    source: Principal
    dest: Principal
    amount: int
    spender: Optional[Principal] = None

    def __repr__(self) -> str:
        via = f" via {self.spender}" if self.spender else ""
        return f"TransferRecord(#{self.sequence_number} {self.amount}: {self.source}→{self.dest}{via})"


class FungibleToken:
    """
    Integer balance ledger for one fungible asset.

    Example:
        token = FungibleToken("USDx", "Pool Dollar", issuer="treasury")
        token.mint("treasury", "pool", 1000)
        token.transfer("pool", "alice", 100)      # True
        token.approve("alice", "pool", 100)
        token.transfer_from("pool", "alice", "pool", 100)   # True
    """

    def __init__(
        self,
        symbol: str,
        name: str,
        issuer: Principal,
        verbose: bool = True,
    ):
        """
        Create a token.

        Args:
            symbol: Short ticker (e.g. "USDx")
            name: Human-readable name
            issuer: The only principal allowed to mint
            verbose: Print rejected transfers (default: True)
        """
        if not symbol or not symbol.strip():
            raise ValueError("Token symbol cannot be empty")
        if not issuer or not issuer.strip():
            raise ValueError("Token issuer cannot be empty")
        self.symbol = symbol
        self.name = name
        self.issuer = issuer
        self.verbose = verbose
        self.balances: Dict[Principal, int] = defaultdict(int)
        self.allowances: Dict[Tuple[Principal, Principal], int] = {}
        self.registered_wallets: Set[Principal] = {SYSTEM_WALLET}
        self.transfer_log: List[TransferRecord] = []
        self._next_sequence: int = 0

    # ========================================================================
    # READ-ONLY
    # ========================================================================

    def balance_of(self, holder: Principal) -> int:
        """Balance held by holder. Unknown holders hold 0."""
        return self.balances.get(holder, 0)

    def allowance(self, owner: Principal, spender: Principal) -> int:
        return self.allowances.get((owner, spender), 0)

    def total_supply(self) -> int:
        """Total issued value, i.e. everything debited from the system wallet."""
        return -self.balances.get(SYSTEM_WALLET, 0)

    def list_wallets(self) -> Set[Principal]:
        return set(self.registered_wallets)

    def verify_double_entry(self) -> Dict[str, Any]:
        """
        Check that balances across all wallets sum to zero.

        Returns:
            Dict with 'valid' (bool), 'sum' (int) and 'total_supply' (int)
        """
        total = sum(self.balances[w] for w in sorted(self.balances))
        return {
            'valid': total == 0,
            'sum': total,
            'total_supply': self.total_supply(),
        }

    # ========================================================================
    # MUTATING
    # ========================================================================

    def register_wallet(self, wallet_id: Principal) -> Principal:
        """
        Register a holder explicitly. Crediting an unknown holder registers it too.

        Raises:
            ValueError: If wallet_id is empty or already registered
        """
        if not wallet_id or not wallet_id.strip():
            raise ValueError("wallet_id cannot be empty")
        if wallet_id in self.registered_wallets:
            raise ValueError(f"Wallet {wallet_id} already registered")
        self.registered_wallets.add(wallet_id)
        return wallet_id

    def mint(self, minter: Principal, to: Principal, amount: int) -> bool:
        """
        Issue new value to a holder.

        Raises:
            NotMinter: If minter is not the issuer
            ValueError: If amount is not a positive integer or to is the system wallet
        """
        if minter != self.issuer:
            raise NotMinter(f"{minter} is not the issuer of {self.symbol}")
        self._check_move(SYSTEM_WALLET, to, amount)
        self._apply(SYSTEM_WALLET, to, amount)
        return True

    def approve(self, owner: Principal, spender: Principal, amount: int) -> bool:
        """Set (not increase) spender's allowance over owner's balance."""
        if not owner or not spender:
            raise ValueError("owner and spender cannot be empty")
        if not isinstance(amount, int) or isinstance(amount, bool) or amount < 0:
            raise ValueError(f"allowance must be a non-negative integer, got {amount!r}")
        self.allowances[(owner, spender)] = amount
        return True

    def transfer(self, sender: Principal, to: Principal, amount: int) -> bool:
        """
        Move value from sender to to.

        Returns:
            True if applied, False (no effect) if sender's balance is insufficient

        Raises:
            ValueError: For malformed input
        """
        self._check_move(sender, to, amount)
        if self.balance_of(sender) < amount:
            self._reject(f"{sender} holds {self.balance_of(sender)} < {amount}")
            return False
        self._apply(sender, to, amount)
        return True

    def transfer_from(
        self,
        spender: Principal,
        source: Principal,
        dest: Principal,
        amount: int,
    ) -> bool:
        """
        Move value from source to dest using spender's allowance.

        Returns:
            True if applied, False (no effect) if the allowance or balance is insufficient
        """
        self._check_move(source, dest, amount)
        allowed = self.allowance(source, spender)
        if allowed < amount:
            self._reject(f"{spender} allowance from {source} is {allowed} < {amount}")
            return False
        if self.balance_of(source) < amount:
            self._reject(f"{source} holds {self.balance_of(source)} < {amount}")
            return False
        self._apply(source, dest, amount, spender=spender)
        self.allowances[(source, spender)] = allowed - amount
        return True

    # ========================================================================
    # INTERNALS
    # ========================================================================

    @staticmethod
    def _check_move(source: Principal, dest: Principal, amount: int) -> None:
        if not source or not source.strip():
            raise ValueError("Transfer source cannot be empty")
        if not dest or not dest.strip():
            raise ValueError("Transfer dest cannot be empty")
        if dest == SYSTEM_WALLET:
            raise ValueError("Cannot transfer into the system wallet")
        if not is_positive_int(amount):
            raise ValueError(f"Transfer amount must be a positive integer, got {amount!r}")
        if source == dest:
            raise ValueError("Source and dest must be different")

    def _apply(
        self,
        source: Principal,
        dest: Principal,
        amount: int,
        spender: Optional[Principal] = None,
    ) -> None:
        self.registered_wallets.add(dest)
        self.balances[source] -= amount
        self.balances[dest] += amount
        self.transfer_log.append(TransferRecord(
            sequence_number=self._next_sequence,
            source=source,
            dest=dest,
            amount=amount,
            spender=spender,
        ))
        self._next_sequence += 1

    def _reject(self, reason: str) -> None:
        if self.verbose:
            print(f"✗ {self.symbol} transfer REJECTED: {reason}")
