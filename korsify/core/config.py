import os
from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

load_dotenv()


class Settings(BaseModel):
    """Application settings loaded from environment: OpenAI key and model, upload limits, generation job limits (timeout, pool size, queue), prompt version and logging.
    Why available: Single source of configuration so the API, worker and dispatcher use consistent limits."""
    openai_api_key: str = os.getenv("OPENAI_API_KEY", "")
    chat_model: str = os.getenv("CHAT_MODEL", "gpt-4o-mini")
    max_file_kb: int = int(os.getenv("MAX_FILE_KB", "10240"))  # 10 MB max upload
    max_document_chars: int = int(os.getenv("MAX_DOCUMENT_CHARS", "60000"))
    prompt_version: str = os.getenv("PROMPT_VERSION", "v1")
    llm_timeout_seconds: float = float(os.getenv("LLM_TIMEOUT_SECONDS", "120"))
    llm_retries: int = int(os.getenv("LLM_RETRIES", "2"))
    job_timeout_seconds: float = float(os.getenv("JOB_TIMEOUT_SECONDS", "900"))
    max_concurrent_jobs: int = int(os.getenv("MAX_CONCURRENT_JOBS", "4"))
    max_queued_jobs: int = int(os.getenv("MAX_QUEUED_JOBS", "16"))
    poll_interval_seconds: float = float(os.getenv("POLL_INTERVAL_SECONDS", "1.0"))
    data_dir: str = os.getenv("DATA_DIR", os.path.join(os.getcwd(), "data"))
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    @field_validator(
        "max_file_kb",
        "max_document_chars",
        "llm_timeout_seconds",
        "job_timeout_seconds",
        "max_concurrent_jobs",
        "poll_interval_seconds",
    )
    @classmethod
    def must_be_positive(cls, v):
        """Ensure size, timeout and pool limits are positive. Prevents invalid config from env."""
        if v <= 0:
            raise ValueError("must be > 0")
        return v

    @field_validator("llm_retries", "max_queued_jobs")
    @classmethod
    def must_not_be_negative(cls, v):
        if v < 0:
            raise ValueError("must be >= 0")
        return v


settings = Settings()
