"""Models for status polling runs."""

import enum
from datetime import datetime
from typing import Optional, Dict, Any, List
from pydantic import BaseModel, Field

from ..config import DEFAULT_POLL_GRACE_SECONDS
from ..database.models import utcnow


class ReconciliationStatus(str, enum.Enum):
    """Status of a polling run."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class PollAction(str, enum.Enum):
    """What a single status check did to its intent."""
    RESOLVED = "resolved"
    ALREADY_RESOLVED = "already_resolved"
    STILL_PENDING = "still_pending"
    CHECK_FAILED = "check_failed"
    NOT_FOUND = "not_found"


class PollOutcome(BaseModel):
    """Result of checking one intent against the provider."""
    reference: str = Field(..., description="Intent reference")
    action: PollAction = Field(..., description="Effect of the check")
    provider_status: Optional[str] = Field(None, description="Status reported by the provider")
    status: Optional[str] = Field(None, description="Intent status after the check")
    resolved_via: Optional[str] = Field(None, description="Path that resolved the intent")
    message: Optional[str] = Field(None, description="Provider or failure message")
    checked_at: datetime = Field(default_factory=utcnow)


class PollRequest(BaseModel):
    """Parameters of a polling run."""
    grace_seconds: int = Field(
        default=DEFAULT_POLL_GRACE_SECONDS, ge=0,
        description="Only intents pending for at least this long are checked",
    )
    limit: int = Field(default=100, gt=0, le=1000, description="Maximum intents checked per run")


class PollReport(BaseModel):
    """Summary and per-intent details of a polling run."""
    id: str = Field(..., description="Run ID")
    status: ReconciliationStatus = Field(default=ReconciliationStatus.PENDING)
    grace_seconds: int = Field(...)
    cutoff: datetime = Field(..., description="Intents created at or before this time were checked")
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = Field(None)

    # Statistics
    total_candidates: int = Field(default=0)
    total_resolved: int = Field(default=0)
    total_already_resolved: int = Field(default=0)
    total_still_pending: int = Field(default=0)
    total_check_failed: int = Field(default=0)

    outcomes: List[PollOutcome] = Field(default_factory=list)

    error_message: Optional[str] = Field(None, description="Error message if the run failed")

    def add_outcome(self, outcome: PollOutcome) -> None:
        self.outcomes.append(outcome)
        if outcome.action == PollAction.RESOLVED:
            self.total_resolved += 1
        elif outcome.action == PollAction.ALREADY_RESOLVED:
            self.total_already_resolved += 1
        elif outcome.action == PollAction.STILL_PENDING:
            self.total_still_pending += 1
        elif outcome.action == PollAction.CHECK_FAILED:
            self.total_check_failed += 1

    def to_summary_dict(self) -> Dict[str, Any]:
        """Return a summary of the run without per-intent outcomes."""
        return {
            "id": self.id,
            "status": self.status.value,
            "grace_seconds": self.grace_seconds,
            "cutoff": self.cutoff.isoformat(),
            "created_at": self.created_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "statistics": {
                "total_candidates": self.total_candidates,
                "total_resolved": self.total_resolved,
                "total_already_resolved": self.total_already_resolved,
                "total_still_pending": self.total_still_pending,
                "total_check_failed": self.total_check_failed,
                "resolution_rate": (
                    f"{(self.total_resolved / self.total_candidates * 100):.2f}%"
                    if self.total_candidates > 0 else "N/A"
                ),
            },
            "error_message": self.error_message,
        }

    def to_full_dict(self) -> Dict[str, Any]:
        """Return the complete report including all outcomes."""
        result = self.to_summary_dict()
        result["outcomes"] = [o.model_dump(mode="json") for o in self.outcomes]
        return result
