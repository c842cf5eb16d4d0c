"""Per-repository bug fixer agent.

Drives issues for one repository through the fix workflow:

    analyze: assemble context → generate proposal → store + request validation
    approve: guard → prepare checkout → branch → apply → validate → publish PR
    reject:  pending → rejected, proposal removed

All collaborators are injected. The apply pipeline runs under the
working tree's lock so approvals for the same repository are serialized.
Any failure after the approval guard forces the proposal to rejected,
emits an error event, sends a best-effort failure notice and re-raises.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

from src.bugfixer.context.assembler import ContextAssembler
from src.bugfixer.events.emitter import EventEmitter
from src.bugfixer.events.models import EventType, PipelineEvent
from src.bugfixer.github.client import GitHubClient
from src.bugfixer.github.models import Issue, RepositoryRef
from src.bugfixer.notifications.mailer import EmailNotifier
from src.bugfixer.proposals.generator import ProposalGenerator
from src.bugfixer.proposals.models import AnalysisResult, FixProposal, ProposalStatus
from src.bugfixer.proposals.store import (
    InvalidProposalStateError,
    ProposalNotFoundError,
    ProposalStore,
)
from src.bugfixer.publisher import PRPublisher
from src.bugfixer.validation.gate import TestResult, ValidationGate
from src.bugfixer.workspace.patcher import PatchApplier
from src.bugfixer.workspace.repository import WorkingTree

logger = logging.getLogger(__name__)


def branch_name_for(proposal: FixProposal) -> str:
    """Branch for an apply attempt: "bugfix/issue-{number}-{epoch_ms}"."""
    epoch_ms = int(datetime.now(timezone.utc).timestamp() * 1000)
    return f"bugfix/issue-{proposal.issue_number}-{epoch_ms}"


@dataclass
class ApprovalOutcome:
    """Result of an approve call that did not raise.

    Attributes:
        proposal: Final proposal snapshot (applied or rejected).
        success: True when a pull request was opened.
        pr_url: Pull request URL on success.
        test_result: Validation result (the failing stage on failure).
    """

    proposal: FixProposal
    success: bool
    pr_url: Optional[str] = None
    test_result: Optional[TestResult] = None


@dataclass
class ScanSummary:
    """Counts from one scan over open issues."""

    issues: int = 0
    proposals: int = 0
    no_fix: int = 0
    failed: int = 0


class BugFixerAgent:
    """Fix workflow for one monitored repository.

    Attributes:
        repository: Repository served by this agent.
        repo_url: Web URL of the repository (used in emails and links).
        store: Proposal store owned by this agent.
        working_tree: Local checkout used for apply and validation.
    """

    def __init__(
        self,
        repository: RepositoryRef,
        repo_url: str,
        github_client: GitHubClient,
        assembler: ContextAssembler,
        generator: ProposalGenerator,
        store: ProposalStore,
        notifier: EmailNotifier,
        working_tree: WorkingTree,
        patcher: PatchApplier,
        gate: ValidationGate,
        publisher: PRPublisher,
        event_emitter: EventEmitter,
        scan_labels: Optional[List[str]] = None,
    ):
        self.repository = repository
        self.repo_url = repo_url
        self.github_client = github_client
        self.assembler = assembler
        self.generator = generator
        self.store = store
        self.notifier = notifier
        self.working_tree = working_tree
        self.patcher = patcher
        self.gate = gate
        self.publisher = publisher
        self.event_emitter = event_emitter
        self.scan_labels = scan_labels or []

    # -------------------------------------------------------------------------
    # Analysis
    # -------------------------------------------------------------------------

    async def get_issue(self, issue_number: int) -> Issue:
        return await self.github_client.get_issue(
            self.repository.owner, self.repository.name, issue_number
        )

    async def analyze_issue(self, issue: Issue) -> AnalysisResult:
        """Analyze one issue and create a proposal when a fix is warranted.

        No-fix outcomes send a best-effort notice. A created proposal is
        stored before the validation request is sent; if that email fails
        the proposal is removed again and the error propagates.

        Args:
            issue: Issue to analyze.

        Returns:
            The analysis result.

        Raises:
            NotificationError: If the validation request cannot be sent.
        """
        issue_id = self.repository.issue_id(issue.number)
        logger.info(
            "Processing issue",
            extra={"issue_id": issue_id, "title": issue.title[:100]},
        )

        context = await self.assembler.assemble(issue)
        result = await self.generator.analyze(issue, context)

        if not result.should_fix or result.proposal is None:
            logger.info(
                "No fix proposed",
                extra={"issue_id": issue_id, "reason": result.reason[:200]},
            )
            await self._safe_emit(
                EventType.NO_FIX,
                issue.number,
                {"reason": result.reason, "confidence": result.confidence},
            )
            await self.notifier.send_no_fix_notice(issue, self.repo_url, result.reason)
            return result

        proposal = await self.store.add(result.proposal)

        try:
            await self.notifier.send_validation_request(proposal, self.repo_url)
        except Exception as exc:
            await self.store.remove(proposal.id)
            logger.error(
                "Validation request failed; proposal discarded",
                extra={"issue_id": issue_id, "proposal_id": proposal.id},
            )
            await self._emit_error(
                issue.number, "notify", str(exc), type(exc).__name__, proposal.id
            )
            raise

        await self._safe_emit(
            EventType.PROPOSAL_CREATED,
            issue.number,
            {
                "proposal_id": proposal.id,
                "confidence": proposal.confidence,
                "changes": len(proposal.code_changes),
            },
        )
        logger.info(
            "Proposal created",
            extra={"issue_id": issue_id, "proposal_id": proposal.id},
        )
        return result

    async def scan_and_analyze(self, limit: Optional[int] = None) -> ScanSummary:
        """Analyze open issues one after another.

        A failure on one issue is logged and the scan moves on.

        Args:
            limit: Maximum number of issues to analyze (None = all).

        Returns:
            ScanSummary with per-outcome counts.

        Raises:
            GitHubAPIError: If the issue listing itself fails.
        """
        issues = await self.github_client.list_issues(
            self.repository.owner,
            self.repository.name,
            labels=self.scan_labels or None,
            limit=limit,
        )
        summary = ScanSummary(issues=len(issues))

        logger.info(
            "Starting scan",
            extra={
                "repository": self.repository.full_name,
                "issues": len(issues),
                "limit": limit,
            },
        )

        for issue in issues:
            try:
                result = await self.analyze_issue(issue)
            except Exception:
                summary.failed += 1
                logger.exception(
                    "Failed to process issue",
                    extra={"issue_id": self.repository.issue_id(issue.number)},
                )
                continue
            if result.should_fix:
                summary.proposals += 1
            else:
                summary.no_fix += 1

        logger.info(
            "Scan completed",
            extra={
                "repository": self.repository.full_name,
                "proposals": summary.proposals,
                "no_fix": summary.no_fix,
                "failed": summary.failed,
            },
        )
        return summary

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def get_proposal(self, proposal_id: str) -> Optional[FixProposal]:
        return await self.store.get(proposal_id)

    async def list_pending(self) -> List[FixProposal]:
        return await self.store.list_pending()

    async def reject_proposal(self, proposal_id: str) -> FixProposal:
        """Reject a pending proposal and drop it from the store.

        Raises:
            ProposalNotFoundError: If the id is unknown.
            InvalidProposalStateError: If the proposal is not pending.
        """
        rejected = await self.store.reject(proposal_id)
        await self._emit_transition(rejected, ProposalStatus.PENDING, ProposalStatus.REJECTED)
        logger.info(
            "Proposal rejected",
            extra={"proposal_id": proposal_id, "issue_number": rejected.issue_number},
        )
        return rejected

    async def approve_proposal(self, proposal_id: str) -> ApprovalOutcome:
        """Approve a pending proposal and run the apply pipeline.

        Returns:
            ApprovalOutcome; success is False when validation failed.

        Raises:
            ProposalNotFoundError: If the id is unknown (no side effects).
            InvalidProposalStateError: If the proposal is not pending
                                       (no side effects).
            Exception: Any apply, git or GitHub failure, after the
                       proposal was forced to rejected.
        """
        proposal = await self.store.approve(proposal_id)
        await self._emit_transition(proposal, ProposalStatus.PENDING, ProposalStatus.APPROVED)

        start_time = time.monotonic()
        stage = "prepare"
        owner, name = self.repository.owner, self.repository.name

        try:
            async with self.working_tree.lock:
                base_branch = await self.github_client.get_default_branch(owner, name)
                await self.working_tree.prepare(base_branch)

                stage = "branch"
                branch_name = branch_name_for(proposal)
                await self.github_client.create_branch(owner, name, branch_name, base_branch)
                await self.working_tree.checkout_branch(branch_name)

                stage = "apply"
                await self.patcher.apply(proposal, branch_name)

                stage = "validate"
                test_result = await self.gate.validate()

            if not test_result.passed:
                error = f"Validation failed at {test_result.stage.value}: {test_result.error}"
                rejected = await self._fail(proposal, test_result.stage.value, error)
                return ApprovalOutcome(
                    proposal=rejected,
                    success=False,
                    test_result=test_result,
                )

            stage = "publish"
            pr = await self.publisher.publish(proposal, branch_name, base_branch)

            applied = await self.store.transition(
                proposal_id,
                ProposalStatus.APPLIED,
                details={"pr_number": pr.pr_number, "branch": branch_name},
                pr_url=pr.pr_url,
            )
        except Exception as exc:
            await self._fail(proposal, stage, str(exc), exc)
            raise

        await self._emit_transition(applied, ProposalStatus.APPROVED, ProposalStatus.APPLIED)
        await self._safe_emit(
            EventType.COMPLETION,
            applied.issue_number,
            {
                "proposal_id": proposal_id,
                "pr_number": pr.pr_number,
                "pr_url": pr.pr_url,
                "duration_seconds": time.monotonic() - start_time,
            },
        )
        await self.notifier.send_outcome(applied, pr.pr_url, True)

        logger.info(
            "Proposal applied",
            extra={"proposal_id": proposal_id, "pr_url": pr.pr_url},
        )
        return ApprovalOutcome(
            proposal=applied,
            success=True,
            pr_url=pr.pr_url,
            test_result=test_result,
        )

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _fail(
        self,
        proposal: FixProposal,
        stage: str,
        error: str,
        exc: Optional[Exception] = None,
    ) -> FixProposal:
        """Force an approved proposal to rejected and notify."""
        if exc is not None:
            logger.exception(
                "Apply pipeline failed",
                extra={"proposal_id": proposal.id, "stage": stage},
            )
        else:
            logger.warning(
                "Apply pipeline rejected proposal",
                extra={"proposal_id": proposal.id, "stage": stage, "error": error},
            )

        rejected = proposal.model_copy(
            update={"status": ProposalStatus.REJECTED, "error": error}
        )
        try:
            rejected = await self.store.transition(
                proposal.id,
                ProposalStatus.REJECTED,
                details={"stage": stage, "error": error},
                error=error,
            )
            await self._emit_transition(rejected, ProposalStatus.APPROVED, ProposalStatus.REJECTED)
        except (ProposalNotFoundError, InvalidProposalStateError):
            logger.exception(
                "Failed to mark proposal rejected",
                extra={"proposal_id": proposal.id},
            )

        await self._emit_error(
            proposal.issue_number,
            stage,
            error,
            type(exc).__name__ if exc is not None else "ValidationFailed",
            proposal.id,
        )
        await self.notifier.send_outcome(rejected, None, False)
        return rejected

    async def _emit_transition(
        self,
        proposal: FixProposal,
        from_status: ProposalStatus,
        to_status: ProposalStatus,
    ) -> None:
        await self._safe_emit(
            EventType.STATE_TRANSITION,
            proposal.issue_number,
            {
                "proposal_id": proposal.id,
                "from_status": from_status.value,
                "to_status": to_status.value,
            },
        )

    async def _emit_error(
        self,
        issue_number: int,
        stage: str,
        error_message: str,
        error_type: str,
        proposal_id: Optional[str] = None,
    ) -> None:
        details = {
            "stage": stage,
            "error_message": error_message,
            "error_type": error_type,
        }
        if proposal_id:
            details["proposal_id"] = proposal_id
        await self._safe_emit(EventType.ERROR, issue_number, details)

    async def _safe_emit(self, event_type: EventType, issue_number: int, details: dict) -> None:
        """Emit an event, swallowing exceptions to avoid disrupting the pipeline."""
        event = PipelineEvent(
            event_type=event_type,
            issue_id=self.repository.issue_id(issue_number),
            repository=self.repository.full_name,
            details=details,
        )
        try:
            await self.event_emitter.emit(event)
        except Exception:
            logger.exception(
                "Failed to emit event",
                extra={"event_type": event_type.value, "issue_id": event.issue_id},
            )
