"""In-memory proposal store enforcing the proposal lifecycle.

One ProposalStore exists per monitored repository. It exclusively owns
the FixProposal instances it holds; every status change replaces the
stored instance with an updated copy and appends to its status history.

All mutations run under a store-wide asyncio.Lock so concurrent approve
or reject calls for the same id cannot both pass the status guard.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from src.bugfixer.proposals.models import (
    FixProposal,
    ProposalStatus,
    StatusTransition,
    is_valid_transition,
)


logger = logging.getLogger(__name__)


class ProposalNotFoundError(Exception):
    """Raised when a proposal id is not present in the store.

    Attributes:
        proposal_id: The id that was looked up.
    """

    def __init__(self, proposal_id: str):
        self.proposal_id = proposal_id
        super().__init__(f"Proposal not found: {proposal_id}")


class InvalidProposalStateError(Exception):
    """Raised when a proposal is not in the state an operation requires.

    Attributes:
        proposal_id: The proposal id.
        current: The proposal's current status.
        target: The status the operation attempted to move to.
    """

    def __init__(
        self,
        proposal_id: str,
        current: ProposalStatus,
        target: ProposalStatus,
    ):
        self.proposal_id = proposal_id
        self.current = current
        self.target = target
        super().__init__(
            f"Proposal {proposal_id} is {current.value}; cannot move to {target.value}"
        )


class ProposalStore:
    """Registry of proposals for one repository.

    Example:
        >>> store = ProposalStore()
        >>> await store.add(proposal)
        >>> approved = await store.approve(proposal.id)
        >>> approved.status
        <ProposalStatus.APPROVED: 'approved'>
    """

    def __init__(self) -> None:
        self._proposals: Dict[str, FixProposal] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._proposals)

    async def add(self, proposal: FixProposal) -> FixProposal:
        """Store a newly generated proposal.

        Raises:
            ValueError: If the proposal is not pending or its id is taken.
        """
        if proposal.status != ProposalStatus.PENDING:
            raise ValueError("new proposals must be pending")

        async with self._lock:
            if proposal.id in self._proposals:
                raise ValueError(f"duplicate proposal id: {proposal.id}")
            self._proposals[proposal.id] = proposal

        logger.info(
            "Stored fix proposal",
            extra={
                "proposal_id": proposal.id,
                "issue_number": proposal.issue_number,
                "confidence": proposal.confidence,
                "changes": len(proposal.code_changes),
            },
        )
        return proposal

    async def get(self, proposal_id: str) -> Optional[FixProposal]:
        return self._proposals.get(proposal_id)

    async def list_pending(self) -> List[FixProposal]:
        """Pending proposals in creation order."""
        return [
            p for p in self._proposals.values() if p.status == ProposalStatus.PENDING
        ]

    async def list_all(self) -> List[FixProposal]:
        return list(self._proposals.values())

    async def remove(self, proposal_id: str) -> Optional[FixProposal]:
        async with self._lock:
            return self._proposals.pop(proposal_id, None)

    async def transition(
        self,
        proposal_id: str,
        to_status: ProposalStatus,
        details: Optional[Dict[str, Any]] = None,
        **updates: Any,
    ) -> FixProposal:
        """Move a proposal to a new status.

        Args:
            proposal_id: Proposal to update.
            to_status: Target status.
            details: Optional metadata recorded on the transition.
            **updates: Extra field updates applied with the transition
                       (e.g. error, pr_url).

        Returns:
            The updated proposal.

        Raises:
            ProposalNotFoundError: If the id is unknown.
            InvalidProposalStateError: If the transition is not allowed.
        """
        async with self._lock:
            return self._transition_locked(proposal_id, to_status, details, updates)

    async def approve(self, proposal_id: str) -> FixProposal:
        """Guarded pending → approved transition.

        Exactly one of several concurrent callers succeeds; the others
        observe APPROVED and fail with InvalidProposalStateError.
        """
        async with self._lock:
            self._require_status(proposal_id, ProposalStatus.PENDING, ProposalStatus.APPROVED)
            return self._transition_locked(
                proposal_id, ProposalStatus.APPROVED, {"reason": "human approval"}, {}
            )

    async def reject(self, proposal_id: str) -> FixProposal:
        """Human rejection: pending → rejected, then removal from the store.

        Returns:
            The rejected proposal, no longer held by the store.

        Raises:
            ProposalNotFoundError: If the id is unknown (including a
                                   proposal that was already rejected).
            InvalidProposalStateError: If the proposal is not pending.
        """
        async with self._lock:
            self._require_status(proposal_id, ProposalStatus.PENDING, ProposalStatus.REJECTED)
            rejected = self._transition_locked(
                proposal_id, ProposalStatus.REJECTED, {"reason": "human rejection"}, {}
            )
            del self._proposals[proposal_id]

        logger.info(
            "Removed rejected proposal",
            extra={"proposal_id": proposal_id, "issue_number": rejected.issue_number},
        )
        return rejected

    # -------------------------------------------------------------------------
    # Internal helpers (caller holds the lock)
    # -------------------------------------------------------------------------

    def _require_status(
        self,
        proposal_id: str,
        required: ProposalStatus,
        target: ProposalStatus,
    ) -> FixProposal:
        proposal = self._proposals.get(proposal_id)
        if proposal is None:
            raise ProposalNotFoundError(proposal_id)
        if proposal.status != required:
            raise InvalidProposalStateError(proposal_id, proposal.status, target)
        return proposal

    def _transition_locked(
        self,
        proposal_id: str,
        to_status: ProposalStatus,
        details: Optional[Dict[str, Any]],
        updates: Dict[str, Any],
    ) -> FixProposal:
        proposal = self._proposals.get(proposal_id)
        if proposal is None:
            raise ProposalNotFoundError(proposal_id)

        from_status = proposal.status
        if not is_valid_transition(from_status, to_status):
            logger.warning(
                "Invalid proposal transition attempted",
                extra={
                    "proposal_id": proposal_id,
                    "from_status": from_status.value,
                    "to_status": to_status.value,
                },
            )
            raise InvalidProposalStateError(proposal_id, from_status, to_status)

        now = datetime.now(timezone.utc)
        record = StatusTransition(
            from_status=from_status,
            to_status=to_status,
            timestamp=now,
            details=details or {},
        )
        updated = proposal.model_copy(
            update={
                **updates,
                "status": to_status,
                "status_history": proposal.status_history + [record],
                "updated_at": now,
            }
        )
        self._proposals[proposal_id] = updated

        logger.info(
            "Proposal status changed",
            extra={
                "proposal_id": proposal_id,
                "from_status": from_status.value,
                "to_status": to_status.value,
            },
        )
        return updated
