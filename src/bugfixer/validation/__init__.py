"""Validation gate: lint, build and test before a pull request is opened."""

from src.bugfixer.validation.gate import (
    TestResult,
    ValidationGate,
    ValidationStage,
    ValidationTimeouts,
    detect_command,
    has_test_failures,
)

__all__ = [
    "detect_command",
    "has_test_failures",
    "TestResult",
    "ValidationGate",
    "ValidationStage",
    "ValidationTimeouts",
]
