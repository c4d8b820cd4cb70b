"""
membership.py - Governor Registry

Stores which principals are governors and the weight their votes carry.
All governors share one representation (DAOMember); there is no role hierarchy.

Removing a governor erases the record entirely, including its weight.
Votes it already cast stay counted on the loans it voted on, because the
tallies live on the loan records, not here.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

from .core import (
    DuplicateMember, InvalidWeight, NotAMember, Principal, is_positive_int,
)


@dataclass(frozen=True, slots=True)
class DAOMember:
    """A registered governor."""
    principal: Principal
    voting_weight: int
    joined_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.principal or not self.principal.strip():
            raise ValueError("DAOMember principal cannot be empty")
        if not is_positive_int(self.voting_weight):
            raise InvalidWeight(
                f"voting weight must be a positive integer, got {self.voting_weight!r}"
            )


class MembershipRegistry:
    """
    Governor records keyed by principal.

    Example:
        registry = MembershipRegistry()
        registry.add_member("alice", 2)
        registry.voting_weight("alice")   # 2
        registry.remove_member("alice")
        registry.voting_weight("alice")   # 0
    """

    def __init__(self):
        self._members: Dict[Principal, DAOMember] = {}

    def is_member(self, principal: Principal) -> bool:
        return principal in self._members

    def get_member(self, principal: Principal) -> DAOMember:
        """
        Raises:
            NotAMember: If principal is not a governor
        """
        if principal not in self._members:
            raise NotAMember(f"{principal} is not a governor")
        return self._members[principal]

    def voting_weight(self, principal: Principal) -> int:
        """Weight of principal's vote, 0 for non-members."""
        member = self._members.get(principal)
        return member.voting_weight if member else 0

    def list_members(self) -> List[DAOMember]:
        """All governors sorted by principal."""
        return [self._members[p] for p in sorted(self._members)]

    def total_voting_weight(self) -> int:
        return sum(m.voting_weight for m in self._members.values())

    def __len__(self) -> int:
        return len(self._members)

    def add_member(
        self,
        principal: Principal,
        weight: int,
        joined_at: Optional[datetime] = None,
    ) -> DAOMember:
        """
        Register a governor.

        Raises:
            DuplicateMember: If principal is already a governor
            InvalidWeight: If weight is not a positive integer
        """
        if principal in self._members:
            raise DuplicateMember(f"{principal} is already a governor")
        if not is_positive_int(weight):
            raise InvalidWeight(f"voting weight must be a positive integer, got {weight!r}")
        member = DAOMember(principal=principal, voting_weight=weight, joined_at=joined_at)
        self._members[principal] = member
        return member

    def remove_member(self, principal: Principal) -> DAOMember:
        """
        Erase a governor's record and return it.

        Raises:
            NotAMember: If principal is not a governor
        """
        if principal not in self._members:
            raise NotAMember(f"{principal} is not a governor")
        return self._members.pop(principal)

    def clone(self) -> MembershipRegistry:
        cloned = MembershipRegistry.__new__(MembershipRegistry)
        cloned._members = dict(self._members)
        return cloned

    @classmethod
    def from_members(cls, members: List[DAOMember]) -> MembershipRegistry:
        registry = cls()
        for member in members:
            if member.principal in registry._members:
                raise DuplicateMember(f"{member.principal} is already a governor")
            registry._members[member.principal] = member
        return registry
