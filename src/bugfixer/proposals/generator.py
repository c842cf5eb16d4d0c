"""LLM-backed fix proposal generator.

This module implements ProposalGenerator, which asks a language model
whether an issue can be fixed automatically given a repository context
bundle, and turns a positive answer into a pending FixProposal.

The generator never raises: request failures, empty responses and
malformed or schema-invalid output all degrade to a no-fix
AnalysisResult carrying a human-readable reason. A positive answer below
CONFIDENCE_THRESHOLD is downgraded to no-fix as well.

The model is reached through LangChain's ChatOpenAI against any
OpenAI-compatible endpoint.
"""

import logging
from typing import Any, Optional

from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from src.bugfixer.github.models import Issue
from src.bugfixer.proposals.models import (
    CONFIDENCE_THRESHOLD,
    AnalysisResult,
    CodeChange,
    FixProposal,
)
from src.bugfixer.proposals.parsing import ParseError, parse_model_response


logger = logging.getLogger(__name__)


ANALYSIS_SYSTEM_PROMPT = f"""You are an expert code reviewer. You analyze GitHub issues together with excerpts of the repository they were filed against and decide whether the issue can be fixed automatically.

Consider:
1. Is it a bug (not a feature request)?
2. Do you have enough context from the code to propose a fix?
3. Are the relevant files provided in the context?

Respond with valid JSON only, using this exact structure:
{{
  "shouldFix": boolean,
  "confidence": number (0-100),
  "reason": "Detailed explanation of why this can or cannot be fixed",
  "title": "Brief fix title (if shouldFix=true)",
  "description": "Detailed explanation of the fix (if shouldFix=true)",
  "codeChanges": [
    {{
      "filePath": "path/to/file",
      "explanation": "Why this change fixes the issue",
      "originalCode": "exact code to find and replace",
      "newCode": "new code to insert"
    }}
  ]
}}

Rules for codeChanges:
- originalCode must be copied verbatim from the provided context, including whitespace.
- Use an empty originalCode only to create a new file; newCode is then the full file content.

Only set shouldFix=true if:
- It's clearly a bug
- You can see the relevant code in the context
- You're confident about the fix (confidence >= {CONFIDENCE_THRESHOLD})

If code is missing or it's a feature request, explain what's needed in the "reason" field."""


def _build_analysis_prompt(issue: Issue, context: str) -> str:
    """Build the user prompt for one issue."""
    body = issue.body if issue.body else "(no description provided)"
    labels = ", ".join(issue.labels) if issue.labels else "none"

    return f"""ISSUE #{issue.number}: {issue.title}

LABELS: {labels}

DESCRIPTION:
{body}

CODE CONTEXT:
{context}

Provide your analysis as JSON."""


class ProposalGenerator:
    """Turns (issue, context) into a fix proposal or a no-fix decision.

    Attributes:
        llm_url: Base URL of the OpenAI-compatible endpoint.
        model_name: Model to use for inference.
        temperature: Sampling temperature.
        max_tokens: Completion token cap.
        timeout: Client-level request timeout in seconds.

    Example:
        >>> generator = ProposalGenerator(
        ...     llm_url="https://llm.example.com/v1",
        ...     api_key="sk-xxx",
        ...     model_name="kimi-k2.5",
        ... )
        >>> result = await generator.analyze(issue, context)
        >>> result.should_fix
        True
    """

    def __init__(
        self,
        llm_url: str,
        api_key: str,
        model_name: str,
        temperature: float = 0.2,
        max_tokens: int = 4000,
        timeout: float = 120.0,
        llm: Optional[Any] = None,
    ):
        """Initialize the generator.

        Args:
            llm_url: Base URL of the OpenAI-compatible endpoint.
            api_key: API key for the endpoint.
            model_name: Model to use for inference.
            temperature: Sampling temperature (lower = more deterministic).
            max_tokens: Completion token cap.
            timeout: Request timeout in seconds.
            llm: Optional pre-built chat model exposing ``ainvoke``.
        """
        self.llm_url = llm_url
        self.api_key = api_key
        self.model_name = model_name
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self._llm = llm

    @property
    def llm(self) -> Any:
        """Get the chat model, creating it if necessary."""
        if self._llm is None:
            self._llm = ChatOpenAI(
                base_url=self.llm_url,
                api_key=self.api_key,
                model=self.model_name,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                timeout=self.timeout,
            )
        return self._llm

    async def analyze(self, issue: Issue, context: str) -> AnalysisResult:
        """Decide whether an issue can be fixed and propose the fix.

        Args:
            issue: The issue to analyze.
            context: Repository context bundle.

        Returns:
            AnalysisResult. should_fix is True only when the model proposed
            at least one change with confidence >= CONFIDENCE_THRESHOLD.
        """
        logger.info(
            "Analyzing issue",
            extra={
                "issue_number": issue.number,
                "title": issue.title[:100],
                "context_length": len(context),
            },
        )

        messages = [
            SystemMessage(content=ANALYSIS_SYSTEM_PROMPT),
            HumanMessage(content=_build_analysis_prompt(issue, context)),
        ]

        try:
            response = await self.llm.ainvoke(messages)
        except Exception as e:
            logger.error(
                "Model request failed",
                extra={
                    "issue_number": issue.number,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
            )
            return AnalysisResult.no_fix(f"Analysis error: {e}")

        content = getattr(response, "content", None)
        if not isinstance(content, str) or not content.strip():
            logger.warning(
                "Empty response from model",
                extra={"issue_number": issue.number},
            )
            return AnalysisResult.no_fix("Empty response from LLM")

        parsed = parse_model_response(content)
        if isinstance(parsed, ParseError):
            logger.warning(
                "Unusable model response",
                extra={
                    "issue_number": issue.number,
                    "error": parsed.message,
                    "response_preview": content[:200],
                },
            )
            return AnalysisResult.no_fix(f"Analysis error: {parsed.message}")

        if not parsed.shouldFix:
            logger.info(
                "Model declined to fix issue",
                extra={
                    "issue_number": issue.number,
                    "confidence": parsed.confidence,
                    "reason": parsed.reason[:200],
                },
            )
            return AnalysisResult.no_fix(parsed.reason, confidence=parsed.confidence)

        if parsed.confidence < CONFIDENCE_THRESHOLD:
            logger.info(
                "Fix confidence below threshold",
                extra={
                    "issue_number": issue.number,
                    "confidence": parsed.confidence,
                    "threshold": CONFIDENCE_THRESHOLD,
                },
            )
            return AnalysisResult.no_fix(
                f"Confidence {parsed.confidence} is below the required "
                f"{CONFIDENCE_THRESHOLD}: {parsed.reason}",
                confidence=parsed.confidence,
            )

        if not parsed.codeChanges:
            return AnalysisResult.no_fix(
                "Model proposed a fix without any code changes",
                confidence=parsed.confidence,
            )

        proposal = FixProposal(
            issue_number=issue.number,
            title=parsed.title or f"Fix issue #{issue.number}",
            description=parsed.description or parsed.reason,
            code_changes=[
                CodeChange(
                    file_path=change.filePath,
                    original_code=change.originalCode,
                    new_code=change.newCode,
                    explanation=change.explanation,
                )
                for change in parsed.codeChanges
            ],
            confidence=parsed.confidence,
        )

        logger.info(
            "Fix proposal generated",
            extra={
                "issue_number": issue.number,
                "proposal_id": proposal.id,
                "confidence": proposal.confidence,
                "changes": len(proposal.code_changes),
            },
        )

        return AnalysisResult(
            should_fix=True,
            confidence=parsed.confidence,
            reason=parsed.reason,
            proposal=proposal,
        )
