"""Status polling for payment intents.

A pending intent whose callback is late or lost is settled by asking
PayHero for the transaction status. Both the callback and the poll path
resolve through the same settlement service, so an intent is settled once
no matter which path gets there first.
"""

from .models import (
    ReconciliationStatus,
    PollAction,
    PollOutcome,
    PollRequest,
    PollReport,
)
from .poller import StatusPoller, map_provider_status, PROVIDER_TERMINAL_STATUSES
from .report import ReportGenerator, REPORT_FORMATS

__all__ = [
    # Models
    "ReconciliationStatus",
    "PollAction",
    "PollOutcome",
    "PollRequest",
    "PollReport",
    # Core Components
    "StatusPoller",
    "map_provider_status",
    "PROVIDER_TERMINAL_STATUSES",
    "ReportGenerator",
    "REPORT_FORMATS",
]
