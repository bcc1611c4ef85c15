"""
Core Logic
==========
Origin authorization and admission policy tables.
"""

from voicegate.core.domains import DomainMatcher, get_domain_matcher
from voicegate.core.policy import CallType, Check, DenialReason, FailurePolicy

__all__ = [
    "DomainMatcher",
    "get_domain_matcher",
    "CallType",
    "Check",
    "DenialReason",
    "FailurePolicy",
]
