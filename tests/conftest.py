"""Shared pytest fixtures and factories for bug fixer tests."""

from typing import List, Optional

import pytest

from src.bugfixer.github.models import Issue, RepositoryRef
from src.bugfixer.proposals.models import CodeChange, FixProposal


def make_issue(
    number: int = 42,
    title: str = "crash on empty input",
    body: str = "Calling parse('') throws in `src/parse.ts`",
    labels: Optional[List[str]] = None,
) -> Issue:
    return Issue(number=number, title=title, body=body, labels=labels or ["bug"])


def make_change(
    file_path: str = "src/parse.ts",
    original_code: str = "const a = 1;\nconst b = 2;\nreturn a / b;",
    new_code: str = "const a = 1;\nconst b = 2;\nreturn b === 0 ? 0 : a / b;",
    explanation: str = "Guard against division by zero",
) -> CodeChange:
    return CodeChange(
        file_path=file_path,
        original_code=original_code,
        new_code=new_code,
        explanation=explanation,
    )


def make_proposal(
    issue_number: int = 42,
    confidence: int = 85,
    changes: Optional[List[CodeChange]] = None,
    **kwargs,
) -> FixProposal:
    return FixProposal(
        issue_number=issue_number,
        title="Handle empty input",
        description="Return early when the input is empty",
        code_changes=changes if changes is not None else [make_change()],
        confidence=confidence,
        **kwargs,
    )


@pytest.fixture
def repository() -> RepositoryRef:
    return RepositoryRef(owner="acme", name="widgets")


@pytest.fixture
def issue() -> Issue:
    return make_issue()


@pytest.fixture
def proposal() -> FixProposal:
    return make_proposal()


@pytest.fixture
def issue_factory():
    return make_issue


@pytest.fixture
def change_factory():
    return make_change


@pytest.fixture
def proposal_factory():
    return make_proposal
