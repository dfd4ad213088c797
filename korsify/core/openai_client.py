"""OpenAI client for course generation (api_key and timeout from config)."""
from typing import Any

from korsify.core.config import settings
from openai import OpenAI

_openai_client: Any = None


def get_openai_client() -> OpenAI:
    """Return a singleton OpenAI client configured with api_key and request timeout from settings.
    SDK-level retries are disabled: transient errors are retried by with_retry so each attempt respects the job deadline."""
    global _openai_client
    if _openai_client is None:
        _openai_client = OpenAI(
            api_key=settings.openai_api_key,
            timeout=settings.llm_timeout_seconds,
            max_retries=0,
        )
    return _openai_client
