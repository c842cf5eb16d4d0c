"""Working tree management and patch application.

This module manages the local checkout used to apply approved proposals:
- Clone-or-refresh of the repository checkout
- Branch checkout, per-change commits and push
- Exact-substring patch application
"""

from src.bugfixer.workspace.patcher import ApplyConflictError, PatchApplier, PatchApplyError
from src.bugfixer.workspace.repository import GitCommandError, WorkingTree, working_dir_for

__all__ = [
    "ApplyConflictError",
    "GitCommandError",
    "PatchApplier",
    "PatchApplyError",
    "WorkingTree",
    "working_dir_for",
]
