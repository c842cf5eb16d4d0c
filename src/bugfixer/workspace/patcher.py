"""Apply a proposal's code changes to a working tree.

Each CodeChange is applied in declared order as an exact substring
replacement (first occurrence only) or, when original_code is empty, as
a whole-file write. Every change is committed on its own and the branch
is pushed once all changes are committed. The first failure aborts the
remaining changes; already-committed changes are left in place.
"""

import logging
from pathlib import Path

from src.bugfixer.proposals.models import CodeChange, FixProposal
from src.bugfixer.workspace.repository import WorkingTree

logger = logging.getLogger(__name__)

COMMIT_SUBJECT_CHARS = 50


class PatchApplyError(Exception):
    """Raised when a code change cannot be applied.

    Attributes:
        file_path: Repository-relative path of the failing change.
    """

    def __init__(self, file_path: str, message: str):
        self.file_path = file_path
        super().__init__(message)


class ApplyConflictError(PatchApplyError):
    """Raised when original_code is not present verbatim in the target file."""

    def __init__(self, file_path: str):
        super().__init__(file_path, f"Original code not found in {file_path}")


def commit_message_for(change: CodeChange) -> str:
    """Commit message for one change: "fix: " plus a truncated explanation."""
    subject = change.explanation.strip().splitlines()[0] if change.explanation.strip() else ""
    return f"fix: {subject[:COMMIT_SUBJECT_CHARS] or 'update ' + change.file_path}"


def apply_change_to_text(content: str, change: CodeChange) -> str:
    """Return file content with one change applied.

    Raises:
        ApplyConflictError: If original_code does not occur in content.
    """
    if change.creates_file:
        return change.new_code
    if change.original_code not in content:
        raise ApplyConflictError(change.file_path)
    return content.replace(change.original_code, change.new_code, 1)


class PatchApplier:
    """Materializes approved proposals on a working tree."""

    def __init__(self, working_tree: WorkingTree):
        self.working_tree = working_tree

    def _resolve(self, file_path: str) -> Path:
        root = self.working_tree.path.resolve()
        target = (root / file_path).resolve()
        if target == root or root not in target.parents:
            raise PatchApplyError(file_path, f"Path escapes repository: {file_path}")
        return target

    async def apply(self, proposal: FixProposal, branch_name: str) -> None:
        """Apply, commit and push every change of a proposal.

        The working tree must already be checked out on ``branch_name``.

        Args:
            proposal: Approved proposal.
            branch_name: Branch to push once all changes are committed.

        Raises:
            ApplyConflictError: If a change's original_code is absent.
            PatchApplyError: If a path is invalid or the file cannot be written.
            GitCommandError: If staging, committing or pushing fails.
        """
        logger.info(
            "Applying changes",
            extra={
                "proposal_id": proposal.id,
                "branch": branch_name,
                "changes": len(proposal.code_changes),
            },
        )

        for index, change in enumerate(proposal.code_changes):
            target = self._resolve(change.file_path)

            try:
                exists = target.is_file()
                current = target.read_text(encoding="utf-8") if exists else ""
                updated = apply_change_to_text("" if change.creates_file else current, change)
                if exists and updated == current:
                    logger.info(
                        "Change leaves file unchanged; skipping commit",
                        extra={
                            "proposal_id": proposal.id,
                            "file_path": change.file_path,
                            "change_index": index,
                        },
                    )
                    continue
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_text(updated, encoding="utf-8")
            except PatchApplyError:
                logger.error(
                    "Change could not be applied",
                    extra={
                        "proposal_id": proposal.id,
                        "file_path": change.file_path,
                        "change_index": index,
                    },
                )
                raise
            except (OSError, UnicodeDecodeError) as e:
                raise PatchApplyError(
                    change.file_path, f"Failed to write {change.file_path}: {e}"
                ) from e

            await self.working_tree.commit_file(change.file_path, commit_message_for(change))

        await self.working_tree.push(branch_name)
