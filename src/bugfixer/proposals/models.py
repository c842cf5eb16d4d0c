"""Fix proposal models and lifecycle definitions.

This module defines:
- ProposalStatus: Enum of proposal lifecycle states
- CodeChange: One literal find-and-replace (or file creation)
- StatusTransition: Audit record of a status change
- FixProposal: A candidate fix awaiting human approval
- AnalysisResult: Outcome of asking the model about an issue
- VALID_TRANSITIONS: Map defining allowed status transitions

Models serialize with camelCase aliases (issueNumber, codeChanges, ...)
since they are returned verbatim by the HTTP API and embedded in emails.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


# Proposals below this confidence are never stored as fixes
CONFIDENCE_THRESHOLD = 70


class ProposalStatus(str, Enum):
    """Lifecycle states of a fix proposal.

    Status Flow:
        pending → approved → applied     (success)
        pending → approved → rejected    (apply, validation or PR failure)
        pending → rejected               (human rejection)

    No transition may target PENDING; APPLIED and REJECTED are terminal.
    """

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    APPLIED = "applied"


VALID_TRANSITIONS: Dict[ProposalStatus, List[ProposalStatus]] = {
    ProposalStatus.PENDING: [
        ProposalStatus.APPROVED,
        ProposalStatus.REJECTED,
    ],
    # APPROVED: apply pipeline running; ends applied or rejected
    ProposalStatus.APPROVED: [
        ProposalStatus.APPLIED,
        ProposalStatus.REJECTED,
    ],
    ProposalStatus.APPLIED: [],
    ProposalStatus.REJECTED: [],
}


def is_valid_transition(from_status: ProposalStatus, to_status: ProposalStatus) -> bool:
    """Check if a status transition is allowed.

    Example:
        >>> is_valid_transition(ProposalStatus.PENDING, ProposalStatus.APPROVED)
        True
        >>> is_valid_transition(ProposalStatus.REJECTED, ProposalStatus.PENDING)
        False
    """
    return to_status in VALID_TRANSITIONS.get(from_status, [])


def is_terminal_status(status: ProposalStatus) -> bool:
    """Check if a status has no outgoing transitions."""
    return len(VALID_TRANSITIONS.get(status, [])) == 0


def generate_proposal_id() -> str:
    """Generate a process-unique proposal identifier.

    Format: "fix-{epoch_ms}-{8 hex chars}".
    """
    epoch_ms = int(datetime.now(timezone.utc).timestamp() * 1000)
    return f"fix-{epoch_ms}-{uuid.uuid4().hex[:8]}"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CodeChange(_CamelModel):
    """One literal code change within a proposal.

    When original_code is empty the change creates (or overwrites) the
    file with new_code. Otherwise original_code must appear verbatim in
    the target file at apply time.
    """

    file_path: str = Field(
        ...,
        min_length=1,
        description="Path of the target file relative to the repository root",
    )

    original_code: str = Field(
        default="",
        description="Exact snippet to replace; empty means create the file",
    )

    new_code: str = Field(
        ...,
        description="Replacement snippet, or full file content for new files",
    )

    explanation: str = Field(
        default="",
        description="Why this change fixes the issue",
    )

    @property
    def creates_file(self) -> bool:
        return self.original_code == ""


class StatusTransition(_CamelModel):
    """Record of a proposal status change."""

    from_status: ProposalStatus
    to_status: ProposalStatus
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    details: Dict[str, Any] = Field(default_factory=dict)


class FixProposal(_CamelModel):
    """A candidate fix for one issue, owned by a ProposalStore.

    Instances are replaced, never mutated in place, on every status
    change so readers always observe a consistent snapshot.

    Attributes:
        id: Unique identifier ("fix-{epoch_ms}-{suffix}").
        issue_number: Number of the originating issue.
        title: Short fix title.
        description: Detailed explanation of the fix.
        code_changes: Ordered changes; applied in this order.
        confidence: Model confidence, 0-100.
        status: Current lifecycle status.
        status_history: Ordered audit trail of transitions.
        created_at: When the proposal was generated (UTC).
        updated_at: When the proposal last changed (UTC).
        error: Failure reason when the apply pipeline rejected it.
        pr_url: Pull request URL once applied.
    """

    id: str = Field(default_factory=generate_proposal_id, min_length=1)
    issue_number: int = Field(..., gt=0)
    title: str = ""
    description: str = ""
    code_changes: List[CodeChange] = Field(default_factory=list)
    confidence: int = Field(..., ge=0, le=100)
    status: ProposalStatus = ProposalStatus.PENDING
    status_history: List[StatusTransition] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    error: Optional[str] = None
    pr_url: Optional[str] = None

    def summary(self) -> Dict[str, Any]:
        """Compact representation used by proposal listings."""
        return {
            "id": self.id,
            "issueNumber": self.issue_number,
            "title": self.title,
            "confidence": self.confidence,
            "createdAt": self.created_at.isoformat(),
        }


class AnalysisResult(_CamelModel):
    """Outcome of analyzing one issue.

    A result with should_fix=True always carries a proposal whose
    confidence is at least CONFIDENCE_THRESHOLD; every other outcome is a
    documented no-fix decision with a human-readable reason.
    """

    should_fix: bool
    confidence: int = Field(default=0, ge=0, le=100)
    reason: str = ""
    proposal: Optional[FixProposal] = None

    @classmethod
    def no_fix(cls, reason: str, confidence: int = 0) -> "AnalysisResult":
        return cls(should_fix=False, confidence=confidence, reason=reason)
