"""
Business Services
=================
Usage ledger, call slots, admission and call registration.
"""

from voicegate.services.admission import AdmissionController, AdmissionResult
from voicegate.services.calls import CallService
from voicegate.services.ledger import UsageLedger
from voicegate.services.provider import RetellClient
from voicegate.services.slots import CallSlotManager

__all__ = [
    "AdmissionController",
    "AdmissionResult",
    "CallService",
    "CallSlotManager",
    "RetellClient",
    "UsageLedger",
]
