"""Fix proposals: models, model-output parsing, generation and storage.

Proposals move through pending → approved → applied, with rejection
possible from pending (human decision) or approved (pipeline failure).
"""

from src.bugfixer.proposals.models import (
    CONFIDENCE_THRESHOLD,
    VALID_TRANSITIONS,
    AnalysisResult,
    CodeChange,
    FixProposal,
    ProposalStatus,
    StatusTransition,
    is_terminal_status,
    is_valid_transition,
)
from src.bugfixer.proposals.store import (
    InvalidProposalStateError,
    ProposalNotFoundError,
    ProposalStore,
)

__all__ = [
    "AnalysisResult",
    "CodeChange",
    "CONFIDENCE_THRESHOLD",
    "FixProposal",
    "InvalidProposalStateError",
    "is_terminal_status",
    "is_valid_transition",
    "ProposalNotFoundError",
    "ProposalStatus",
    "ProposalStore",
    "StatusTransition",
    "VALID_TRANSITIONS",
]
