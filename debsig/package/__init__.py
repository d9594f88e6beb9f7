"""
Package access for debsig-verify.
"""

from .ar import ArMember, DebPackage, PackageReader

__all__ = [
    'ArMember',
    'DebPackage',
    'PackageReader',
]
