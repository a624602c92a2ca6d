"""Quiz generation module.

Responsibilities:
- Ask the generative service for multiple-choice items over a context
- Enforce a deadline on the call
- Parse the response (one sanitizing pass, never a second call)
- Validate every item against the quiz schema, all or nothing

Expected response (JSON):
{
  "success": true,
  "total": 2,
  "items": [
    {"question": "...", "options": ["a", "b", "c", "d"],
     "answer": 0, "explanation": "..."}
  ]
}

Nothing is persisted here; callers store the returned items.
"""

from __future__ import annotations

import asyncio
import json
import re
import time
from dataclasses import dataclass, field
from typing import Any, Literal

import structlog

from livequiz.config.app_config import MAX_QUIZ_COUNT
from livequiz.core.context_assembler import AssembledContext
from livequiz.core.errors import ParseError, SchemaError, ShapeError
from livequiz.llm.client import LLMClient

logger = structlog.get_logger(__name__)

# =============================================================================
# TYPES
# =============================================================================

GenerationErrorKind = Literal["timeout", "parse", "schema", "remote", "rejected"]

OPTION_COUNT = 4

# =============================================================================
# PROMPTS
# =============================================================================

SYSTEM_PROMPT_QUIZ = """You are an experienced teacher writing in-class quiz questions.

STRICT RULES:
1. Use ONLY the provided content, do not invent facts
2. Every question has exactly 4 options and exactly one correct option
3. "answer" is the 0-based index (0-3) of the correct option
4. Every question has a short explanation of why the answer is correct
5. Write in the same language as the content
6. Answer ONLY with valid JSON, no prose and no markdown

The JSON must have exactly this structure:
{
  "success": true,
  "total": <number of items>,
  "items": [
    {
      "question": "Clear, self-contained question",
      "options": ["option A", "option B", "option C", "option D"],
      "answer": 0,
      "explanation": "Why this option is correct"
    }
  ]
}

If the content is not enough to write meaningful questions, answer
{"success": false, "total": 0, "items": []}."""

USER_PROMPT_QUIZ = """Write {count} multiple-choice questions based ONLY on the following content:

---
{content}
---

Return the JSON with {count} items."""

# Reasoning models may wrap their answer in these
THINK_PATTERNS = [
    re.compile(r"<think>[\s\S]*?</think>", re.IGNORECASE),
    re.compile(r"<thinking>[\s\S]*?</thinking>", re.IGNORECASE),
]

# =============================================================================
# DATA CLASSES
# =============================================================================


@dataclass
class GeneratedQuiz:
    """A validated quiz item, not yet persisted."""

    question: str
    options: list[str]
    correct_index: int
    explanation: str

    def to_dict(self) -> dict[str, Any]:
        """Convert to the dict shape insert_quiz_items expects."""
        return {
            "question": self.question,
            "options": list(self.options),
            "correct_index": self.correct_index,
            "explanation": self.explanation,
        }


@dataclass
class GenerationResult:
    """Result of one generation request."""

    success: bool
    items: list[GeneratedQuiz]
    message: str
    requested_count: int
    error_kind: GenerationErrorKind | None = None
    warnings: list[str] = field(default_factory=list)
    latency_ms: int = 0


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================


def clamp_count(count: int, max_count: int = MAX_QUIZ_COUNT) -> int:
    """Clamp a requested item count to [1, max_count]."""
    return max(1, min(int(count), max_count))


def _strip_non_json(text: str) -> str:
    """Drop reasoning tags and anything outside the outermost braces."""
    for pattern in THINK_PATTERNS:
        text = pattern.sub("", text)

    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end < start:
        return ""
    return text[start : end + 1]


def parse_response(raw: str) -> dict[str, Any]:
    """Parse the service response into a JSON object.

    Strict parse first; on failure one sanitizing pass, then a second parse.

    Raises:
        ParseError: If the text is not JSON even after sanitizing
        SchemaError: If the JSON is not an object
    """
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        cleaned = _strip_non_json(raw)
        try:
            data = json.loads(cleaned)
        except json.JSONDecodeError as e:
            raise ParseError(f"Response is not valid JSON: {e}") from e
        logger.debug("quiz.response_sanitized", raw_chars=len(raw), kept_chars=len(cleaned))

    if not isinstance(data, dict):
        raise SchemaError(f"Expected a JSON object, got {type(data).__name__}")
    return data


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _non_empty_str(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def _validate_item(index: int, item: Any) -> GeneratedQuiz:
    if not isinstance(item, dict):
        raise SchemaError(f"items[{index}] is not an object")

    question = item.get("question")
    if not _non_empty_str(question):
        raise SchemaError(f"items[{index}].question must be a non-empty string")

    options = item.get("options")
    if not isinstance(options, list) or len(options) != OPTION_COUNT:
        raise SchemaError(f"items[{index}].options must be a list of {OPTION_COUNT} strings")
    if not all(_non_empty_str(o) for o in options):
        raise SchemaError(f"items[{index}].options must all be non-empty strings")

    answer = item.get("answer")
    if not _is_int(answer) or not 0 <= answer < OPTION_COUNT:
        raise SchemaError(f"items[{index}].answer must be an integer in [0, {OPTION_COUNT - 1}]")

    explanation = item.get("explanation")
    if not _non_empty_str(explanation):
        raise SchemaError(f"items[{index}].explanation must be a non-empty string")

    return GeneratedQuiz(
        question=question.strip(),
        options=[o.strip() for o in options],
        correct_index=answer,
        explanation=explanation.strip(),
    )


def validate_payload(data: dict[str, Any]) -> tuple[bool, list[GeneratedQuiz]]:
    """Validate a parsed response.

    Returns:
        (success flag reported by the service, validated items)

    Raises:
        SchemaError: On any violation; no item is accepted in that case
    """
    success = data.get("success")
    if not isinstance(success, bool):
        raise SchemaError("'success' must be a boolean")

    if not _is_int(data.get("total")):
        raise SchemaError("'total' must be an integer")

    items = data.get("items")
    if not isinstance(items, list):
        raise SchemaError("'items' must be a list")

    return success, [_validate_item(i, item) for i, item in enumerate(items)]


def _failure(
    kind: GenerationErrorKind,
    message: str,
    requested: int,
    warnings: list[str],
    start_time: float,
) -> GenerationResult:
    return GenerationResult(
        success=False,
        items=[],
        message=message,
        requested_count=requested,
        error_kind=kind,
        warnings=warnings,
        latency_ms=int((time.time() - start_time) * 1000),
    )


# =============================================================================
# MAIN FUNCTION
# =============================================================================


async def generate_quiz(
    client: LLMClient,
    context: AssembledContext | str,
    count: int,
    timeout: float,
    max_count: int = MAX_QUIZ_COUNT,
) -> GenerationResult:
    """Generate quiz items from a context.

    Args:
        client: Generative service client
        context: Assembled context (or raw text)
        count: Requested number of items (clamped to [1, max_count])
        timeout: Deadline for the service call, in seconds
        max_count: Upper clamp for count

    Returns:
        GenerationResult; failures are reported through error_kind, never raised
    """
    start_time = time.time()
    warnings: list[str] = []

    requested = clamp_count(count, max_count)
    if requested != count:
        warnings.append(f"Requested count {count} clamped to {requested}")

    text = context.text if isinstance(context, AssembledContext) else context
    if isinstance(context, AssembledContext) and context.truncated:
        warnings.append("Context was truncated before generation")

    prompt = USER_PROMPT_QUIZ.format(count=requested, content=text)

    logger.info("quiz.generation_started", count=requested, context_chars=len(text))

    try:
        raw = await asyncio.wait_for(
            asyncio.to_thread(client.complete, SYSTEM_PROMPT_QUIZ, prompt),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        logger.warning("quiz.generation_timeout", timeout=timeout)
        return _failure(
            "timeout",
            f"Quiz generation timed out after {timeout:g}s, please retry",
            requested,
            warnings,
            start_time,
        )
    except Exception as e:
        logger.error("quiz.generation_remote_error", error=str(e), error_type=type(e).__name__)
        return _failure("remote", f"Generative service failed: {e}", requested, warnings, start_time)

    try:
        data = parse_response(raw)
        service_success, items = validate_payload(data)
    except ShapeError as e:
        kind: GenerationErrorKind = "parse" if isinstance(e, ParseError) else "schema"
        logger.warning("quiz.invalid_response", kind=kind, error=str(e), raw_chars=len(raw))
        return _failure(kind, str(e), requested, warnings, start_time)

    if not service_success or not items:
        logger.info("quiz.generation_rejected", service_success=service_success)
        return _failure(
            "rejected",
            "The generative service could not produce questions for this content",
            requested,
            warnings,
            start_time,
        )

    if len(items) > requested:
        warnings.append(f"Received {len(items)} items, kept the first {requested}")
        items = items[:requested]
    elif len(items) < requested:
        warnings.append(f"Requested {requested} items, received {len(items)}")

    if data["total"] != len(items):
        logger.debug("quiz.total_mismatch", total=data["total"], items=len(items))

    latency_ms = int((time.time() - start_time) * 1000)
    logger.info("quiz.generated", count=len(items), requested=requested, latency_ms=latency_ms)

    return GenerationResult(
        success=True,
        items=items,
        message=f"Generated {len(items)} quiz items",
        requested_count=requested,
        warnings=warnings,
        latency_ms=latency_ms,
    )
