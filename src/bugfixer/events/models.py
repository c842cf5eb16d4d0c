"""Bug fixer event models for observability.

This module defines:
- EventType: Enum of all event types emitted by the agent
- PipelineEvent: Structured event with all required metadata

Events are emitted for monitoring and debugging; emission failures never
affect proposal processing.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """Types of events emitted by the bug fixer.

    Attributes:
        PROPOSAL_CREATED: A fix proposal was stored and sent for validation.
        NO_FIX: Analysis concluded the issue should not be fixed automatically.
        STATE_TRANSITION: A proposal moved between lifecycle statuses.
        ERROR: A pipeline stage failed.
        COMPLETION: A proposal was applied and its pull request opened.
    """

    PROPOSAL_CREATED = "proposal_created"
    NO_FIX = "no_fix"
    STATE_TRANSITION = "state_transition"
    ERROR = "error"
    COMPLETION = "completion"


class PipelineEvent(BaseModel):
    """Structured event emitted by the bug fixer.

    Attributes:
        event_type: The category of event.
        issue_id: Canonical identifier in format "{owner}/{repo}#{number}".
        repository: Full repository path in format "{owner}/{repo}".
        timestamp: When the event occurred (UTC timezone).
        details: Additional context specific to the event type.

    Details Field Conventions:
        PROPOSAL_CREATED: proposal_id, confidence, changes
        NO_FIX: reason, confidence
        STATE_TRANSITION: proposal_id, from_status, to_status
        ERROR: stage, error_message, error_type, proposal_id (optional)
        COMPLETION: proposal_id, pr_number, pr_url, duration_seconds
    """

    event_type: EventType = Field(
        ...,
        description="The category of event being emitted",
    )

    issue_id: str = Field(
        ...,
        min_length=1,
        description='Canonical issue identifier in format "{owner}/{repo}#{number}"',
    )

    repository: str = Field(
        ...,
        min_length=1,
        description='Full repository path in format "{owner}/{repo}"',
    )

    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC timezone)",
    )

    details: Dict[str, Any] = Field(
        default_factory=dict,
        description="Additional context specific to the event type",
    )

    def to_log_dict(self) -> Dict[str, Any]:
        """Flatten the event for structured logging.

        Example:
            >>> event = PipelineEvent(
            ...     event_type=EventType.NO_FIX,
            ...     issue_id="org/repo#7",
            ...     repository="org/repo",
            ...     details={"reason": "feature request"},
            ... )
            >>> event.to_log_dict()["reason"]
            'feature request'
        """
        return {
            "event_type": self.event_type.value,
            "issue_id": self.issue_id,
            "repository": self.repository,
            "timestamp": self.timestamp.isoformat(),
            **self.details,
        }
