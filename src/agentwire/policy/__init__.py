"""
Path access policy for agentwire's file toolset.

Key concepts:
    - AccessPolicy: immutable sandbox description (working dir, roots, blacklist)
    - PathGuard: resolves model-supplied paths and raises AccessError on denial
    - is_within: the root-plus-separator containment test
"""

from agentwire.policy.engine import AccessPolicy, PathGuard, is_within

__all__ = [
    "AccessPolicy",
    "PathGuard",
    "is_within",
]
