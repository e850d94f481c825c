"""
Issue remediation: AI-generated fixes, debug sessions and publishing fixes
to GitHub as a new branch.
"""

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from config import FIX_BRANCH_PREFIX
from github_client import SourceControl
from models import DebugFix, DebugSession, Issue, RepositoryContext, utcnow
from prompts import build_debug_prompt, build_fix_prompt
from providers import ProviderAdapter, ProviderError
from storage import InvalidTransitionError, NotFoundError, Store

logger = logging.getLogger(__name__)

SECTIONS = ("ANALYSIS", "FIXED_CODE", "EXPLANATION", "ERROR_IDENTIFIED")

DEFAULT_EXPLANATION = "The code has been analyzed and improved."
PARSE_FAILED_EXPLANATION = "Failed to parse AI response. Please try again."
PARSE_FAILED_ERROR = "Parsing error"


# =============================================================================
# RESPONSE PARSING
# =============================================================================
@dataclass
class FixResult:
    """Parsed remediation response."""

    fixed_code: str
    explanation: str
    error: str = ""
    analysis: str = ""
    parsed: bool = True


def _marker(line: str) -> str:
    # Models sometimes bold or indent the markers
    return line.strip().strip("*#").strip()


def scan_sections(text: str) -> dict[str, str]:
    """
    Collect ``NAME_START ... NAME_END`` sections from *text*.

    Sections may come in any order; the first complete occurrence of a
    name wins. A section still open when another START appears, or at the
    end of the text, is dropped.
    """
    found: dict[str, str] = {}
    open_name: str | None = None
    body: list[str] = []

    for line in text.splitlines():
        marker = _marker(line)

        if marker.endswith("_START") and marker[: -len("_START")] in SECTIONS:
            open_name = marker[: -len("_START")]
            body = []
        elif open_name and marker == f"{open_name}_END":
            found.setdefault(open_name, "\n".join(body).strip())
            open_name = None
            body = []
        elif open_name:
            body.append(line)

    return found


def unwrap_code_fence(code: str) -> str:
    """Drop a surrounding ```lang ... ``` fence, if present."""
    lines = code.strip().splitlines()
    if len(lines) >= 2 and lines[0].strip().startswith("```") and lines[-1].strip() == "```":
        lines = lines[1:-1]
    return "\n".join(lines).strip()


def parse_fix_response(text: str, original_code: str) -> FixResult:
    """
    Turn a delimited-section response into a FixResult. Never raises.

    Missing sections fall back to the original code, a generic
    explanation and an empty error.
    """
    try:
        sections = scan_sections(text)
        fixed_code = unwrap_code_fence(sections.get("FIXED_CODE", ""))
        return FixResult(
            fixed_code=fixed_code or original_code,
            explanation=sections.get("EXPLANATION") or DEFAULT_EXPLANATION,
            error=sections.get("ERROR_IDENTIFIED", ""),
            analysis=sections.get("ANALYSIS", ""),
        )
    except Exception:
        logger.exception("Failed to parse fix response")
        return FixResult(
            fixed_code=original_code,
            explanation=PARSE_FAILED_EXPLANATION,
            error=PARSE_FAILED_ERROR,
            parsed=False,
        )


# =============================================================================
# RESULTS
# =============================================================================
@dataclass
class FixOutcome:
    """What the caller of generate_fix gets back."""

    original_code: str
    fixed_code: str
    explanation: str
    error: str = ""
    analysis: str = ""
    session_id: str | None = None
    fix_id: str | None = None


@dataclass
class FileFix:
    """New content for one file."""

    file: str
    fixed_code: str
    description: str = ""


@dataclass
class PushResult:
    branch: str
    commit_sha: str
    success_count: int = 0
    fail_count: int = 0
    failures: list[tuple[str, str]] = field(default_factory=list)  # (path, reason)

    @property
    def message(self) -> str:
        failed = f" ({self.fail_count} failed)" if self.fail_count else ""
        return f"Created branch {self.branch} with {self.success_count} fix(es){failed}"


# =============================================================================
# SERVICE
# =============================================================================
class Remediator:
    """Generates fixes for findings and publishes them."""

    def __init__(
        self,
        adapter: ProviderAdapter,
        store: Store,
        source: SourceControl | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.adapter = adapter
        self.store = store
        self.source = source
        self.clock = clock

    # -----------------------------------------------------------------------
    # Sessions
    # -----------------------------------------------------------------------
    def _open_session(
        self, user_id: str, context: RepositoryContext, session_id: str | None
    ) -> str:
        if session_id:
            try:
                return self.store.add_session_issue(session_id).id
            except NotFoundError:
                logger.warning("Debug session %s not found, starting a new one", session_id)

        repository = self.store.get_or_create_repository(user_id, context.owner, context.name)
        session = self.store.create_session(
            DebugSession(
                user_id=user_id,
                owner=context.owner,
                repo=context.name,
                repository_id=repository.id,
                session_name=f"Debug Session {utcnow():%Y-%m-%d %H:%M:%S}",
                total_issues=1,
            )
        )
        logger.info("Created debug session %s for %s/%s", session.id, context.owner, context.name)
        return session.id

    def settle_session(self, session_id: str) -> DebugSession:
        """Move a generating session to ready/failed once every fix is terminal."""
        session = self.store.get_session(session_id)
        fixes = self.store.list_fixes(session_id)
        if session.status != "generating" or not fixes:
            return session
        if any(fix.status not in ("completed", "failed") for fix in fixes):
            return session

        status = "ready" if any(fix.status == "completed" for fix in fixes) else "failed"
        return self.store.patch_session(session_id, status=status, completed_at=utcnow())

    def mark_completed(self, fix_id: str, result: FixResult) -> bool:
        """Record a finished fix; repeated calls for the same fix are no-ops."""
        completed = self.store.complete_fix(
            fix_id,
            fixed_code=result.fixed_code,
            explanation=result.explanation,
            analysis=result.analysis or None,
            error=result.error or None,
        )
        self.settle_session(self.store.get_fix(fix_id).session_id)
        return completed

    def _mark_failed(self, fix_id: str, reason: str) -> None:
        self.store.patch_fix(fix_id, status="failed", error=reason, completed_at=utcnow())
        self.settle_session(self.store.get_fix(fix_id).session_id)

    # -----------------------------------------------------------------------
    # Fix generation
    # -----------------------------------------------------------------------
    def generate_fix(
        self,
        issue: Issue,
        context: RepositoryContext,
        user_id: str,
        provider: str | None = None,
        session_id: str | None = None,
    ) -> FixOutcome:
        """
        Ask the provider for a fix to *issue* and record it in a session.

        A new session is created when *session_id* is not given; otherwise
        the existing session grows by one issue. Never raises: provider or
        parsing failures come back in ``FixOutcome.error``.
        """
        original_code = issue.code_example or ""
        fix_id = None

        try:
            session_id = self._open_session(user_id, context, session_id)
            fix = self.store.create_fix(
                DebugFix(
                    session_id=session_id,
                    issue_title=issue.description[:100] or "Untitled Issue",
                    issue_description=issue.description,
                    file=issue.file,
                    original_code=original_code,
                )
            )
            fix_id = fix.id
            self.store.patch_fix(fix_id, status="generating")
        except Exception:
            # Fix generation still runs; it just won't be persisted
            logger.exception("Could not record debug fix for %s/%s", context.owner, context.name)
            session_id = fix_id = None

        try:
            text = self.adapter.send_prompt(build_fix_prompt(issue, context), provider)
        except ProviderError as e:
            logger.error("Fix generation failed: %s", e)
            if fix_id:
                self._mark_failed(fix_id, str(e))
            return FixOutcome(
                original_code=original_code,
                fixed_code=original_code,
                explanation=f"Failed to generate fix: {e}",
                error=str(e),
                session_id=session_id,
                fix_id=fix_id,
            )

        result = parse_fix_response(text, original_code)

        if fix_id:
            if result.parsed:
                self.mark_completed(fix_id, result)
            else:
                self._mark_failed(fix_id, result.error)

        return FixOutcome(
            original_code=original_code,
            fixed_code=result.fixed_code,
            explanation=result.explanation,
            error=result.error,
            analysis=result.analysis,
            session_id=session_id,
            fix_id=fix_id,
        )

    def debug_snippet(
        self,
        code: str,
        error_message: str | None = None,
        language: str = "javascript",
        provider: str | None = None,
    ) -> FixOutcome:
        """Debug pasted code; nothing is persisted."""
        if not code or not code.strip():
            raise ValueError("Code is required")

        try:
            text = self.adapter.send_prompt(
                build_debug_prompt(code, error_message, language), provider
            )
        except ProviderError as e:
            logger.error("Snippet debugging failed: %s", e)
            return FixOutcome(
                original_code=code,
                fixed_code=code,
                explanation=f"Failed to debug code: {e}",
                error=str(e),
            )

        result = parse_fix_response(text, code)
        return FixOutcome(
            original_code=code,
            fixed_code=result.fixed_code,
            explanation=result.explanation,
            error=result.error,
            analysis=result.analysis,
        )

    # -----------------------------------------------------------------------
    # Publishing
    # -----------------------------------------------------------------------
    def push_fixes(
        self,
        owner: str,
        repo: str,
        fixes: Sequence[FileFix],
        base_branch: str = "main",
        session_id: str | None = None,
    ) -> PushResult:
        """
        Commit each fix onto a fresh branch cut from *base_branch*.

        A failing file is tallied and the remaining files are still written.

        Raises:
            ValueError: No fixes, a fix without file/content, or the branch
                could not be created
        """
        if self.source is None:
            raise ValueError("Publishing fixes needs a GitHub client")
        if not fixes:
            raise ValueError("Repository info and fixes are required")
        for fix in fixes:
            if not fix.file or not fix.fixed_code:
                raise ValueError("Each fix must have file and fixed_code")

        branch = f"{FIX_BRANCH_PREFIX}-{int(self.clock() * 1000)}"
        logger.info("Creating fixes branch %s for %s/%s based on %s", branch, owner, repo, base_branch)

        base_sha = self.source.get_branch_sha(owner, repo, base_branch)
        self.source.create_branch(owner, repo, branch, base_sha)

        result = PushResult(branch=branch, commit_sha=base_sha)
        for fix in fixes:
            try:
                sha = self.source.get_file_sha(owner, repo, fix.file, branch)
                self.source.update_file(
                    owner,
                    repo,
                    fix.file,
                    fix.fixed_code,
                    sha,
                    branch,
                    f"fix: {fix.description or 'AI-generated fix'}",
                )
            except Exception as e:
                result.fail_count += 1
                result.failures.append((fix.file, str(e)))
                logger.warning("Failed to update file %s: %s", fix.file, e)
                continue
            result.success_count += 1
            logger.info("Successfully updated: %s", fix.file)

        result.commit_sha = self.source.get_branch_sha(owner, repo, branch)
        logger.info(
            "Push complete: %d succeeded, %d failed",
            result.success_count,
            result.fail_count,
        )

        if session_id:
            try:
                self.store.patch_session(session_id, status="pushed", branch=branch)
            except (NotFoundError, InvalidTransitionError) as e:
                logger.warning("Could not mark session %s pushed: %s", session_id, e)

        return result
