"""LLM calls for the generation pipeline: document analysis, course outline, per-module content and standalone quiz questions."""
import json
import logging
import time
from typing import Any, Dict, List, Optional

import openai
from pydantic import ValidationError

from korsify.core.config import settings
from korsify.core.openai_client import get_openai_client
from korsify.guardrails.errors import InvalidOutputError, JobTimeoutError, UpstreamError
from korsify.models.course import (
    CourseOutline,
    GeneratedModule,
    GenerationOptions,
    QuizQuestion,
    QuizQuestionList,
)
from korsify.prompts.loader import get_system_prompt, get_user_prompt, placeholders, render
from korsify.utils.retry import with_retry

logger = logging.getLogger(__name__)

# Worth another attempt; everything else from the SDK fails the job at once.
TRANSIENT_ERRORS = (
    openai.RateLimitError,
    openai.APIConnectionError,
    openai.InternalServerError,
)


def _safe_json_loads(raw: str) -> Dict[str, Any]:
    """Parse the LLM output as JSON. If the output is wrapped in prose or a code fence, try the first {...} block.
    Raises InvalidOutputError when no JSON object can be recovered."""
    raw = (raw or "").strip()
    if not raw:
        raise InvalidOutputError("Empty response from model")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        start = raw.find("{")
        end = raw.rfind("}")
        if start == -1 or end <= start:
            raise InvalidOutputError("Model response is not JSON") from None
        try:
            data = json.loads(raw[start : end + 1])
        except json.JSONDecodeError as e:
            raise InvalidOutputError(f"Model response is not JSON: {e.msg}") from None
    if not isinstance(data, dict):
        raise InvalidOutputError("Model response is not a JSON object")
    return data


def _validate(model_cls, data: Dict[str, Any], what: str):
    try:
        return model_cls.model_validate(data)
    except ValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        loc = ".".join(str(p) for p in first.get("loc", ()))
        raise InvalidOutputError(f"Generated {what} does not match schema ({loc}: {first.get('msg', 'invalid')})") from None


def _quiz_rules(options: GenerationOptions) -> str:
    if not options.generate_quizzes:
        return "Do not generate any quizzes (set every quiz to null)."
    if options.quiz_frequency == "lesson":
        return (
            f"Give EVERY lesson a quiz with exactly {options.questions_per_quiz} questions; "
            "leave the module-level quiz null."
        )
    return (
        f"Give the module ONE quiz with exactly {options.questions_per_quiz} questions; "
        "leave lesson quizzes null."
    )


class CourseGenerator:
    """Thin wrapper over chat completions with JSON validation, transient-error retries and a per-job deadline.
    Why available: The worker calls one method per pipeline step; tests swap the OpenAI client for a fake."""

    def __init__(self, client: Any = None, model: Optional[str] = None, retries: Optional[int] = None):
        self._client = client
        self.model = model or settings.chat_model
        self.retries = settings.llm_retries if retries is None else retries

    @property
    def client(self):
        if self._client is None:
            self._client = get_openai_client()
        return self._client

    def _request_timeout(self, deadline: Optional[float]) -> float:
        timeout = settings.llm_timeout_seconds
        if deadline is None:
            return timeout
        remaining = deadline - time.time()
        if remaining <= 0:
            raise JobTimeoutError("Job exceeded its deadline")
        return min(timeout, remaining)

    def _chat(
        self,
        component: str,
        values: Dict[str, object],
        *,
        json_mode: bool,
        deadline: Optional[float],
        temperature: float = 0.4,
    ) -> str:
        template = get_user_prompt(component)
        unfilled = [p for p in placeholders(template) if p not in values]
        if unfilled:
            logger.warning("prompt_placeholders_unfilled", extra={"component": component, "placeholders": unfilled})
        messages = [
            {"role": "system", "content": get_system_prompt(component)},
            {"role": "user", "content": render(template, values)},
        ]

        def _call() -> str:
            kwargs: Dict[str, Any] = {
                "model": self.model,
                "messages": messages,
                "temperature": temperature,
                "timeout": self._request_timeout(deadline),
            }
            if json_mode:
                kwargs["response_format"] = {"type": "json_object"}
            resp = self.client.chat.completions.create(**kwargs)
            return resp.choices[0].message.content or ""

        t0 = time.perf_counter()
        try:
            raw = with_retry(
                _call,
                retries=self.retries,
                backoff_seconds=1.0,
                retry_on=TRANSIENT_ERRORS,
                deadline=deadline,
            )
        except openai.APITimeoutError as e:
            if deadline is not None and time.time() >= deadline:
                raise JobTimeoutError("Job exceeded its deadline while waiting for the model") from e
            raise UpstreamError(f"AI service timed out: {e}") from e
        except openai.APIError as e:
            raise UpstreamError(f"AI service error: {e}") from e

        logger.info(
            "llm_call_done",
            extra={"component": component, "latency_ms": round((time.perf_counter() - t0) * 1000.0, 2)},
        )
        return raw

    def analyze_document(self, document: str, file_names: str, deadline: Optional[float] = None) -> str:
        """Free-text analysis of the source (topics, objectives, complexity). Fed into the outline prompt."""
        raw = self._chat(
            "document_analysis",
            {"DOCUMENT": document, "FILE_NAMES": file_names},
            json_mode=False,
            deadline=deadline,
        )
        analysis = raw.strip()
        if not analysis:
            raise InvalidOutputError("Document analysis came back empty")
        return analysis

    def generate_outline(
        self,
        document: str,
        file_names: str,
        analysis: str,
        options: GenerationOptions,
        deadline: Optional[float] = None,
    ) -> CourseOutline:
        raw = self._chat(
            "course_outline",
            {
                "DOCUMENT": document,
                "FILE_NAMES": file_names,
                "ANALYSIS": analysis,
                "MODULE_COUNT": options.module_count,
                "LANGUAGE": options.language,
                "TARGET_AUDIENCE": options.target_audience,
                "CONTENT_FOCUS": options.content_focus,
                "DIFFICULTY": options.difficulty_level,
            },
            json_mode=True,
            deadline=deadline,
        )
        outline = _validate(CourseOutline, _safe_json_loads(raw), "outline")
        if len(outline.modules) > options.module_count:
            # model overshot; keep the first moduleCount entries
            outline.modules = outline.modules[: options.module_count]
        return outline

    def generate_module(
        self,
        document: str,
        file_names: str,
        outline: CourseOutline,
        index: int,
        options: GenerationOptions,
        deadline: Optional[float] = None,
    ) -> GeneratedModule:
        """Generate lessons (and quizzes, per options) for outline.modules[index]."""
        entry = outline.modules[index]
        outline_text = "\n".join(
            f"{i + 1}. {m.title}: {m.description}" for i, m in enumerate(outline.modules)
        )
        raw = self._chat(
            "module_content",
            {
                "DOCUMENT": document,
                "FILE_NAMES": file_names,
                "COURSE_TITLE": outline.title,
                "COURSE_DESCRIPTION": outline.description,
                "OUTLINE": outline_text,
                "MODULE_NUMBER": index + 1,
                "MODULE_TOTAL": len(outline.modules),
                "MODULE_TITLE": entry.title,
                "MODULE_DESCRIPTION": entry.description,
                "LANGUAGE": options.language,
                "TARGET_AUDIENCE": options.target_audience,
                "DIFFICULTY": options.difficulty_level,
                "EXERCISES": "Include hands-on practice exercises with worked solutions in each lesson."
                if options.include_exercises
                else "Do not include practice exercises.",
                "EXAMPLES": "Include real-world examples drawn from the source throughout each lesson."
                if options.include_examples
                else "Keep examples to a minimum; focus on core concepts.",
                "QUIZ_RULES": _quiz_rules(options),
            },
            json_mode=True,
            deadline=deadline,
        )
        module = _validate(GeneratedModule, _safe_json_loads(raw), f"module {index + 1}")
        if not module.title.strip():
            module.title = entry.title
        return module

    def generate_quiz_questions(
        self,
        content: str,
        count: int,
        difficulty: str,
        deadline: Optional[float] = None,
    ) -> List[QuizQuestion]:
        """Standalone quiz for content whose generated quiz was missing or emptied by de-duplication."""
        raw = self._chat(
            "quiz_questions",
            {"CONTENT": content, "COUNT": count, "DIFFICULTY": difficulty},
            json_mode=True,
            deadline=deadline,
            temperature=0.3,
        )
        data = _safe_json_loads(raw)
        return _validate(QuizQuestionList, data, "quiz").questions[:count]


_generator: Optional[CourseGenerator] = None


def get_generator() -> CourseGenerator:
    """Return the process-wide CourseGenerator."""
    global _generator
    if _generator is None:
        _generator = CourseGenerator()
    return _generator


def set_generator(generator: Optional[CourseGenerator]) -> None:
    """Swap the process-wide generator (tests inject one backed by a fake client)."""
    global _generator
    _generator = generator
