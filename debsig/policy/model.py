"""
Policy Model - what an administrator requires of a package's signatures.

A Policy belongs to one origin and holds two lists of Selector Groups:
``selection`` decides whether the policy applies to a package at all, and
``verification`` decides whether the package passes. Each group combines
Match entries:

    Required    every match must be satisfied
    Optional    at least ``min_required`` matches must be satisfied
    Reject      no match may be satisfied

A group with no matches is never satisfied. Policies are immutable once
loaded.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from ..constants import SignatureKind


class GroupKind(Enum):
    """How a Selector Group combines its matches."""
    REQUIRED = "required"
    OPTIONAL = "optional"
    REJECT = "reject"


@dataclass(frozen=True)
class Match:
    """A single requirement: a keyring and, optionally, a signer identity."""
    keyring_file: str
    identity: Optional[str] = None
    name: Optional[str] = None
    signature_kind: SignatureKind = SignatureKind.ORIGIN
    expiry: Optional[str] = None

    def describe(self) -> str:
        label = self.name or self.identity or self.keyring_file
        return f"{self.signature_kind.value}:{label}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'keyring_file': self.keyring_file,
            'identity': self.identity,
            'name': self.name,
            'signature_kind': self.signature_kind.value,
            'expiry': self.expiry,
        }


@dataclass(frozen=True)
class SelectorGroup:
    """An ordered set of matches plus the rule that combines them."""
    kind: GroupKind
    matches: Tuple[Match, ...] = ()
    min_required: int = 0

    def __post_init__(self):
        # Accept any iterable of matches but store a tuple
        if not isinstance(self.matches, tuple):
            object.__setattr__(self, 'matches', tuple(self.matches))
        if self.min_required < 0:
            raise ValueError(f"min_required must be >= 0, got {self.min_required}")

    def is_satisfied(self, satisfied_count: int) -> bool:
        """Apply the group rule to the number of satisfied matches."""
        if not self.matches:
            return False
        if self.kind is GroupKind.REQUIRED:
            return satisfied_count == len(self.matches)
        if self.kind is GroupKind.OPTIONAL:
            return satisfied_count >= self.min_required
        return satisfied_count == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'kind': self.kind.value,
            'min_required': self.min_required,
            'matches': [m.to_dict() for m in self.matches],
        }


@dataclass(frozen=True)
class Policy:
    """Trust policy for the packages of one origin."""
    origin: str
    verification: Tuple[SelectorGroup, ...] = ()
    selection: Tuple[SelectorGroup, ...] = ()
    origin_name: Optional[str] = None
    origin_description: Optional[str] = None
    source: Optional[str] = field(default=None, compare=False)

    def __post_init__(self):
        for name in ('verification', 'selection'):
            value = getattr(self, name)
            if not isinstance(value, tuple):
                object.__setattr__(self, name, tuple(value))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'origin': self.origin,
            'origin_name': self.origin_name,
            'origin_description': self.origin_description,
            'source': self.source,
            'selection': [g.to_dict() for g in self.selection],
            'verification': [g.to_dict() for g in self.verification],
        }


__all__ = [
    'GroupKind',
    'Match',
    'SelectorGroup',
    'Policy',
]
