"""
Trust policies for debsig-verify.

The model and loader are importable on their own; the evaluator lives in
``debsig.policy.evaluator`` because it depends on the OpenPGP layer, which in
turn depends on the model.
"""

from .loader import find_policies, load_policies, load_policy, parse_policy
from .model import GroupKind, Match, Policy, SelectorGroup

__all__ = [
    'GroupKind',
    'Match',
    'Policy',
    'SelectorGroup',
    'find_policies',
    'load_policies',
    'load_policy',
    'parse_policy',
]
