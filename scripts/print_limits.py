#!/usr/bin/env python3
"""Print upload and generation limits from config. Run from repo root: python scripts/print_limits.py"""
from korsify.core.config import settings
from korsify.documents.extractor import ALLOWED_EXTENSIONS
from korsify.main import RATE_LIMIT_REQUESTS, RATE_LIMIT_WINDOW_SECONDS


def main():
    """Print upload, job pool and rate limits (MAX_FILE_KB, MAX_CONCURRENT_JOBS, JOB_TIMEOUT_SECONDS, ...)."""
    print("Upload & generation limits")
    print("--------------------------")
    print(f"  MAX_FILE_KB           = {settings.max_file_kb} KB (max size per uploaded file)")
    print(f"  Allowed types         = {', '.join(ALLOWED_EXTENSIONS)}")
    print(f"  MAX_DOCUMENT_CHARS    = {settings.max_document_chars} (source text sent to the model)")
    print(f"  MAX_CONCURRENT_JOBS   = {settings.max_concurrent_jobs} (jobs running at once)")
    print(f"  MAX_QUEUED_JOBS       = {settings.max_queued_jobs} (jobs waiting before 503)")
    print(f"  JOB_TIMEOUT_SECONDS   = {settings.job_timeout_seconds} (per-job deadline)")
    print(f"  LLM_TIMEOUT_SECONDS   = {settings.llm_timeout_seconds} / LLM_RETRIES = {settings.llm_retries}")
    print(f"  Rate limit            = {RATE_LIMIT_REQUESTS} requests / {RATE_LIMIT_WINDOW_SECONDS} s (per client IP, per endpoint group)")


if __name__ == "__main__":
    main()
