"""Tests for model output parsing and the ProposalGenerator.

The chat model is replaced by an AsyncMock exposing ``ainvoke`` so no
network access is needed.
"""

import asyncio
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from hypothesis import given, settings, strategies as st

from src.bugfixer.proposals.generator import (
    ANALYSIS_SYSTEM_PROMPT,
    ProposalGenerator,
    _build_analysis_prompt,
)
from src.bugfixer.proposals.models import CONFIDENCE_THRESHOLD, ProposalStatus
from src.bugfixer.proposals.parsing import (
    ModelAnalysis,
    ParseError,
    extract_json_text,
    parse_model_response,
)


def run_async(coro):
    return asyncio.run(coro)


def _fix_payload(confidence: int = 85, should_fix: bool = True, **overrides) -> dict:
    payload = {
        "shouldFix": should_fix,
        "confidence": confidence,
        "reason": "Division by zero on empty input",
        "title": "Handle empty input",
        "description": "Return early when the input is empty",
        "codeChanges": [
            {
                "filePath": "src/parse.ts",
                "explanation": "Guard the empty case",
                "originalCode": "const a = 1;\nconst b = 2;\nreturn a / b;",
                "newCode": "const a = 1;\nconst b = 2;\nreturn b ? a / b : 0;",
            }
        ],
    }
    payload.update(overrides)
    return payload


def _generator_returning(content) -> ProposalGenerator:
    llm = AsyncMock()
    llm.ainvoke.return_value = SimpleNamespace(content=content)
    return ProposalGenerator(
        llm_url="http://llm.local/v1",
        api_key="test-key",
        model_name="test-model",
        llm=llm,
    )


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


class TestExtractJsonText:
    def test_prefers_fenced_block(self):
        text = 'Here you go:\n```json\n{"a": 1}\n```\nThanks {not json}'
        assert extract_json_text(text) == '{"a": 1}'

    def test_falls_back_to_brace_span(self):
        assert extract_json_text('prefix {"a": {"b": 2}} suffix') == '{"a": {"b": 2}}'

    def test_ignores_other_language_fences(self):
        assert extract_json_text('```python\nx = {"a": 1}\n```') == '{"a": 1}'

    def test_no_braces(self):
        assert extract_json_text("no json here") is None


class TestParseModelResponse:
    def test_valid_payload(self):
        result = parse_model_response(json.dumps(_fix_payload()))
        assert isinstance(result, ModelAnalysis)
        assert result.shouldFix is True
        assert result.codeChanges[0].filePath == "src/parse.ts"

    def test_payload_wrapped_in_prose(self):
        text = "After reviewing the code:\n" + json.dumps(_fix_payload()) + "\nHope this helps."
        assert isinstance(parse_model_response(text), ModelAnalysis)

    @pytest.mark.parametrize("text", ["", "   ", None])
    def test_empty_response(self, text):
        assert parse_model_response(text) == ParseError("Empty response from model")

    def test_no_json(self):
        assert parse_model_response("I cannot help with that") == ParseError(
            "No JSON object found in model response"
        )

    def test_malformed_json(self):
        result = parse_model_response('{"shouldFix": true, "confidence": }')
        assert isinstance(result, ParseError)
        assert result.message.startswith("Malformed JSON")

    def test_missing_required_fields(self):
        result = parse_model_response('{"reason": "hmm"}')
        assert isinstance(result, ParseError)
        assert "shouldFix" in result.message
        assert "confidence" in result.message

    def test_confidence_coercion(self):
        result = parse_model_response(json.dumps(_fix_payload(confidence="85")))
        assert result.confidence == 85
        result = parse_model_response(json.dumps(_fix_payload(confidence=84.6)))
        assert result.confidence == 85

    def test_null_original_code_means_create(self):
        payload = _fix_payload()
        payload["codeChanges"][0]["originalCode"] = None
        result = parse_model_response(json.dumps(payload))
        assert result.codeChanges[0].originalCode == ""

    def test_fenced_payload_with_code_fences_in_strings(self):
        payload = _fix_payload()
        payload["codeChanges"][0].update(
            filePath="README.md",
            originalCode="```sh\nnpm i\n```",
            newCode="```sh\nnpm ci\n```",
        )
        text = "Here is my analysis:\n```json\n" + json.dumps(payload, indent=2) + "\n```"

        result = parse_model_response(text)

        assert isinstance(result, ModelAnalysis)
        assert result.codeChanges[0].originalCode == "```sh\nnpm i\n```"
        assert result.codeChanges[0].newCode == "```sh\nnpm ci\n```"

    def test_python_fence_before_payload(self):
        text = (
            "The bug is here:\n```python\nlookup = {}\n```\n"
            "Proposed fix:\n```json\n" + json.dumps(_fix_payload()) + "\n```"
        )
        result = parse_model_response(text)
        assert isinstance(result, ModelAnalysis)
        assert result.title == "Handle empty input"

    @given(text=st.text(max_size=300))
    @settings(max_examples=200)
    def test_never_raises(self, text):
        result = parse_model_response(text)
        assert isinstance(result, (ModelAnalysis, ParseError))


# ---------------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------------


class TestPrompt:
    def test_system_prompt_mentions_threshold(self):
        assert f">= {CONFIDENCE_THRESHOLD}" in ANALYSIS_SYSTEM_PROMPT

    def test_user_prompt_contains_issue_and_context(self, issue):
        prompt = _build_analysis_prompt(issue, "=== src/parse.ts ===\ncode")
        assert "ISSUE #42: crash on empty input" in prompt
        assert "LABELS: bug" in prompt
        assert "=== src/parse.ts ===" in prompt

    def test_user_prompt_placeholder_for_empty_body(self, issue_factory):
        prompt = _build_analysis_prompt(issue_factory(body=""), "ctx")
        assert "(no description provided)" in prompt


class TestProposalGenerator:
    def test_creates_pending_proposal(self, issue):
        generator = _generator_returning(json.dumps(_fix_payload(confidence=85)))

        result = run_async(generator.analyze(issue, "context"))

        assert result.should_fix is True
        proposal = result.proposal
        assert proposal.status == ProposalStatus.PENDING
        assert proposal.issue_number == 42
        assert proposal.confidence == 85
        assert proposal.code_changes[0].file_path == "src/parse.ts"
        assert proposal.title == "Handle empty input"

    def test_sends_system_and_user_messages(self, issue):
        generator = _generator_returning(json.dumps(_fix_payload()))
        run_async(generator.analyze(issue, "context"))

        messages = generator.llm.ainvoke.call_args.args[0]
        assert messages[0].content == ANALYSIS_SYSTEM_PROMPT
        assert "crash on empty input" in messages[1].content

    def test_should_fix_false(self, issue):
        generator = _generator_returning(
            json.dumps({"shouldFix": False, "confidence": 30, "reason": "feature request"})
        )

        result = run_async(generator.analyze(issue, "context"))

        assert result.should_fix is False
        assert result.proposal is None
        assert result.reason == "feature request"
        assert result.confidence == 30

    @given(confidence=st.integers(min_value=0, max_value=CONFIDENCE_THRESHOLD - 1))
    @settings(max_examples=30)
    def test_low_confidence_never_yields_proposal(self, confidence):
        generator = _generator_returning(json.dumps(_fix_payload(confidence=confidence)))
        issue = SimpleNamespace(number=3, title="t", body="b", labels=[])

        result = run_async(generator.analyze(issue, "context"))

        assert result.should_fix is False
        assert result.proposal is None
        assert "below the required" in result.reason

    def test_threshold_is_inclusive(self, issue):
        generator = _generator_returning(
            json.dumps(_fix_payload(confidence=CONFIDENCE_THRESHOLD))
        )
        assert run_async(generator.analyze(issue, "context")).should_fix is True

    def test_no_code_changes(self, issue):
        generator = _generator_returning(json.dumps(_fix_payload(codeChanges=[])))
        result = run_async(generator.analyze(issue, "context"))
        assert result.should_fix is False
        assert "without any code changes" in result.reason

    def test_default_title(self, issue):
        generator = _generator_returning(json.dumps(_fix_payload(title="")))
        result = run_async(generator.analyze(issue, "context"))
        assert result.proposal.title == "Fix issue #42"

    def test_empty_response(self, issue):
        result = run_async(_generator_returning("").analyze(issue, "context"))
        assert result.should_fix is False
        assert result.reason == "Empty response from LLM"

    def test_unparseable_response(self, issue):
        result = run_async(_generator_returning("Sorry!").analyze(issue, "context"))
        assert result.should_fix is False
        assert result.reason.startswith("Analysis error:")

    def test_request_failure_degrades_to_no_fix(self, issue):
        generator = _generator_returning("")
        generator.llm.ainvoke.side_effect = ConnectionError("connection refused")

        result = run_async(generator.analyze(issue, "context"))

        assert result.should_fix is False
        assert result.reason == "Analysis error: connection refused"
