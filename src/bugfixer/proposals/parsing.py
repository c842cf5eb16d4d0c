"""Strict parsing of language model output.

The model is asked for a JSON object but frequently wraps it in prose or
a fenced code block. parse_model_response locates the JSON payload,
validates it against ModelAnalysis and returns either the validated
payload or a ParseError describing what went wrong. It never raises.
"""

import json
import math
import re
from dataclasses import dataclass
from typing import Any, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


# Opening fence of a ```json or untagged block; other languages are ignored
FENCE_OPEN_PATTERN = re.compile(r"```(?:json)?[ \t]*\n", re.IGNORECASE)


class ModelCodeChange(BaseModel):
    """One change as emitted by the model."""

    model_config = ConfigDict(extra="ignore")

    filePath: str = Field(..., min_length=1)
    originalCode: str = ""
    newCode: str
    explanation: str = ""

    @field_validator("originalCode", mode="before")
    @classmethod
    def default_missing_original(cls, v: Optional[str]) -> str:
        return v or ""


class ModelAnalysis(BaseModel):
    """Schema of the JSON object the model is instructed to return."""

    model_config = ConfigDict(extra="ignore")

    shouldFix: bool
    confidence: int = Field(..., ge=0, le=100)
    reason: str = "No reason provided"
    title: str = ""
    description: str = ""
    codeChanges: List[ModelCodeChange] = Field(default_factory=list)

    @field_validator("confidence", mode="before")
    @classmethod
    def coerce_confidence(cls, v: object) -> object:
        # Models sometimes emit 85.0 or "85"
        if isinstance(v, str) and v.strip().replace(".", "", 1).isdecimal():
            v = float(v)
        if isinstance(v, float):
            if not math.isfinite(v):
                raise ValueError("confidence must be a finite number")
            return int(round(v))
        return v

    @field_validator("reason", "title", "description", mode="before")
    @classmethod
    def default_null_text(cls, v: Optional[str]) -> str:
        return "" if v is None else v


@dataclass(frozen=True)
class ParseError:
    """Why a model response could not be used."""

    message: str


def json_candidates(text: str) -> List[str]:
    """Candidate JSON payloads inside raw model text, most specific first.

    A ```json (or untagged) fenced block comes first, then the span from
    the first "{" to the last "}". The span still covers answers whose
    string values contain their own ``` fences, which end the fenced
    match early.
    """
    candidates: List[str] = []
    for opening in FENCE_OPEN_PATTERN.finditer(text):
        close = text.find("```", opening.end())
        chunk = text[opening.end() : close if close != -1 else len(text)].strip()
        if "{" in chunk and chunk not in candidates:
            candidates.append(chunk)

    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end > start:
        span = text[start : end + 1]
        if span not in candidates:
            candidates.append(span)
    return candidates


def extract_json_text(text: str) -> Optional[str]:
    """Most specific JSON candidate, or None if nothing object-shaped is present."""
    candidates = json_candidates(text)
    return candidates[0] if candidates else None


def parse_model_response(text: Optional[str]) -> Union[ModelAnalysis, ParseError]:
    """Parse and validate a raw model response.

    Args:
        text: Raw completion text.

    Returns:
        ModelAnalysis on success, ParseError otherwise.

    Example:
        >>> result = parse_model_response('{"shouldFix": false, "confidence": 10}')
        >>> result.shouldFix
        False
        >>> parse_model_response("sorry, I cannot help")
        ParseError(message='No JSON object found in model response')
    """
    if not text or not text.strip():
        return ParseError("Empty response from model")

    candidates = json_candidates(text)
    if not candidates:
        return ParseError("No JSON object found in model response")

    payload: Any = None
    decode_error: Optional[json.JSONDecodeError] = None
    for candidate in candidates:
        try:
            payload = json.loads(candidate)
        except json.JSONDecodeError as e:
            decode_error = decode_error or e
            continue
        decode_error = None
        break

    if decode_error is not None:
        return ParseError(f"Malformed JSON in model response: {decode_error.msg}")

    if not isinstance(payload, dict):
        return ParseError("Model response JSON is not an object")

    try:
        return ModelAnalysis.model_validate(payload)
    except ValidationError as e:
        fields = ", ".join(
            ".".join(str(part) for part in err["loc"]) for err in e.errors()
        )
        return ParseError(f"Model response failed validation: {fields}")
