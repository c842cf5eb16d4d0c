"""Lint, build and test gating for a patched working tree.

The ValidationGate runs lint → build → test against the working tree,
stopping at the first failing stage. Commands are detected from the
repository's manifests: package.json scripts, well-known test framework
config files, Makefile targets, Cargo, Go modules and pytest config.
A stage with no detectable command passes vacuously.

Exit codes alone are not trusted for the test stage: a zero-exit run
whose output contains explicit failure markers is reported as failed.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from src.bugfixer.runner.command import CommandRunner

logger = logging.getLogger(__name__)


class ValidationStage(str, Enum):
    LINT = "lint"
    BUILD = "build"
    TEST = "test"


STAGE_ORDER = [ValidationStage.LINT, ValidationStage.BUILD, ValidationStage.TEST]

# Config file → test command, checked in order when package.json has no test script
TEST_FRAMEWORK_CONFIGS = [
    ("jest.config.js", ["npx", "jest"]),
    ("jest.config.ts", ["npx", "jest"]),
    ("vitest.config.js", ["npx", "vitest", "run"]),
    ("vitest.config.ts", ["npx", "vitest", "run"]),
    ("playwright.config.js", ["npx", "playwright", "test"]),
    ("playwright.config.ts", ["npx", "playwright", "test"]),
    ("cypress.json", ["npx", "cypress", "run"]),
    ("pytest.ini", ["python", "-m", "pytest"]),
    ("conftest.py", ["python", "-m", "pytest"]),
]

TEST_FAILURE_PATTERNS = [
    re.compile(r"^\s*FAIL\b", re.MULTILINE),
    re.compile(r"\b[1-9]\d*\s+(?:failed|failing|failures?)\b", re.IGNORECASE),
    re.compile(r"[✕✖]"),
    re.compile(r"^=+ FAILURES =+$", re.MULTILINE),
]


@dataclass
class ValidationTimeouts:
    """Per-stage command timeouts in seconds."""

    lint: float = 120
    build: float = 300
    test: float = 300

    def for_stage(self, stage: ValidationStage) -> float:
        return getattr(self, stage.value)


@dataclass
class TestResult:
    """Result of one validation stage (or of the whole gate).

    Attributes:
        stage: Stage that produced the result.
        passed: True when the stage succeeded or had no command.
        output: Combined stdout and stderr.
        error: Failure reason when passed is False.
        duration_ms: Wall-clock duration in milliseconds.
        command: Command that ran (empty when the stage had none).
    """

    # Not a pytest test class
    __test__ = False

    stage: ValidationStage
    passed: bool
    output: str = ""
    error: Optional[str] = None
    duration_ms: int = 0
    command: List[str] = field(default_factory=list)


def has_test_failures(output: str) -> bool:
    """Check test output for explicit failure markers.

    Example:
        >>> has_test_failures("Tests: 2 failed, 10 passed")
        True
        >>> has_test_failures("Tests: 0 failed, 12 passed")
        False
    """
    return any(pattern.search(output) for pattern in TEST_FAILURE_PATTERNS)


def _load_package_scripts(root: Path) -> Dict[str, str]:
    manifest = root / "package.json"
    if not manifest.is_file():
        return {}
    try:
        data = json.loads(manifest.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        logger.warning("Unreadable package.json", extra={"path": str(manifest)})
        return {}
    scripts = data.get("scripts") if isinstance(data, dict) else None
    return scripts if isinstance(scripts, dict) else {}


def _make_targets(root: Path) -> List[str]:
    makefile = root / "Makefile"
    if not makefile.is_file():
        return []
    try:
        text = makefile.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return []
    return re.findall(r"^([A-Za-z0-9_.-]+)\s*:(?!=)", text, re.MULTILINE)


def detect_command(root: Path, stage: ValidationStage) -> Optional[List[str]]:
    """Find the command for a stage, or None if the repository has none.

    Args:
        root: Working tree root.
        stage: Validation stage.

    Returns:
        Command argument list.
    """
    scripts = _load_package_scripts(root)
    if stage.value in scripts:
        if stage == ValidationStage.TEST:
            return ["npm", "test"]
        return ["npm", "run", stage.value]

    if stage == ValidationStage.TEST:
        for filename, command in TEST_FRAMEWORK_CONFIGS:
            if (root / filename).is_file():
                return list(command)

    if stage.value in _make_targets(root):
        return ["make", stage.value]

    if (root / "Cargo.toml").is_file():
        return {
            ValidationStage.LINT: ["cargo", "clippy", "--", "-D", "warnings"],
            ValidationStage.BUILD: ["cargo", "build"],
            ValidationStage.TEST: ["cargo", "test"],
        }[stage]

    if (root / "go.mod").is_file():
        return {
            ValidationStage.LINT: ["go", "vet", "./..."],
            ValidationStage.BUILD: ["go", "build", "./..."],
            ValidationStage.TEST: ["go", "test", "./..."],
        }[stage]

    return None


class ValidationGate:
    """Runs lint → build → test against a working tree.

    Example:
        >>> gate = ValidationGate(Path("/var/repos/acme"), CommandRunner())
        >>> result = await gate.validate()
        >>> result.passed, result.stage
        (False, <ValidationStage.BUILD: 'build'>)
    """

    def __init__(
        self,
        root: Path,
        runner: CommandRunner,
        timeouts: Optional[ValidationTimeouts] = None,
    ):
        self.root = root
        self.runner = runner
        self.timeouts = timeouts or ValidationTimeouts()

    async def run_stage(self, stage: ValidationStage) -> TestResult:
        """Run a single stage.

        Returns:
            TestResult; a stage without a command passes with an
            explanatory output.
        """
        command = detect_command(self.root, stage)
        if command is None:
            logger.info(
                "No command detected for stage",
                extra={"stage": stage.value, "path": str(self.root)},
            )
            return TestResult(
                stage=stage,
                passed=True,
                output=f"No {stage.value} configured",
            )

        logger.info(
            "Running validation stage",
            extra={"stage": stage.value, "command": " ".join(command)},
        )

        result = await self.runner.run(
            command,
            cwd=self.root,
            timeout=self.timeouts.for_stage(stage),
        )
        duration_ms = int(result.duration_seconds * 1000)

        error: Optional[str] = None
        if result.timed_out:
            error = f"{stage.value} timed out after {self.timeouts.for_stage(stage)}s"
        elif result.exit_code != 0:
            error = f"{stage.value} exited with code {result.exit_code}"
        elif stage == ValidationStage.TEST and has_test_failures(result.output):
            error = "test output reports failures"

        passed = error is None
        log = logger.info if passed else logger.warning
        log(
            "Validation stage finished",
            extra={
                "stage": stage.value,
                "passed": passed,
                "exit_code": result.exit_code,
                "duration_ms": duration_ms,
                "error": error,
            },
        )

        return TestResult(
            stage=stage,
            passed=passed,
            output=result.output,
            error=error,
            duration_ms=duration_ms,
            command=command,
        )

    async def validate(self) -> TestResult:
        """Run all stages in order, stopping at the first failure.

        Returns:
            The failing stage's result, or the test stage's result when
            every stage passed.
        """
        result: Optional[TestResult] = None
        for stage in STAGE_ORDER:
            result = await self.run_stage(stage)
            if not result.passed:
                return result
        assert result is not None
        return result
