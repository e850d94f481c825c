"""Shared configuration and utilities for RepoLens."""

import functools
import logging
import os
import re
import time

from dotenv import load_dotenv

# ---------------------------------------------------------------------------
# Environment & logging (initialised once on first import)
# ---------------------------------------------------------------------------
load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
USE_MOCK: bool = os.getenv("USE_MOCK", "false").lower() == "true"

PROVIDERS: tuple[str, ...] = ("openai", "claude", "gemini")
DEFAULT_PROVIDER: str = os.getenv("DEFAULT_PROVIDER", "openai")

# Order in which the remaining configured providers are tried after a failure
FALLBACK_ORDER: tuple[str, ...] = ("gemini", "claude", "openai")

OPENAI_MODEL: str = os.getenv("OPENAI_MODEL", "gpt-4-turbo-preview")
CLAUDE_MODEL: str = os.getenv("CLAUDE_MODEL", "claude-3-5-sonnet-20241022")
GEMINI_MODEL: str = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")

# Repository analysis
BATCH_SIZE: int = 10
BATCH_DELAY_SECONDS: float = 1.0
MAX_FILE_SIZE: int = 100_000
FALLBACK_BRANCH: str = "master"

# Pull request analysis (~3000 tokens per chunk)
MAX_DIFF_CHARS: int = 12_000

FIX_BRANCH_PREFIX: str = "ai-fixes"

# Repo format: "owner/repo"
_REPO_PATTERN = re.compile(r"^[\w.-]+/[\w.-]+$")


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------
def validate_repo(repo: str) -> str:
    """Validate repository string matches 'owner/repo' format.

    Returns *repo* unchanged on success; raises ``ValueError`` otherwise.
    """
    if not _REPO_PATTERN.match(repo):
        raise ValueError(
            f"Invalid repo format: {repo!r}. Expected 'owner/repo' "
            f"(e.g. 'octocat/hello-world')."
        )
    return repo


def validate_provider(provider: str) -> str:
    """Return *provider* if it names a supported AI backend."""
    if provider not in PROVIDERS:
        raise ValueError(
            f"Invalid AI provider {provider!r}. "
            f"Must be one of: {', '.join(PROVIDERS)}"
        )
    return provider


# ---------------------------------------------------------------------------
# Retry decorator
# ---------------------------------------------------------------------------
def with_retry(
    max_retries: int = 3,
    base_delay: float = 1.0,
    retryable: tuple[type[Exception], ...] = (Exception,),
):
    """Retry the wrapped call on *retryable* errors, doubling the delay each time."""

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            for attempt in range(1, max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except retryable as exc:
                    if attempt == max_retries:
                        raise
                    delay = base_delay * 2 ** (attempt - 1)
                    logger.warning(
                        "%s failed (attempt %d/%d): %s; retrying in %.1fs",
                        func.__name__,
                        attempt,
                        max_retries,
                        exc,
                        delay,
                    )
                    time.sleep(delay)

        return wrapper

    return decorator
