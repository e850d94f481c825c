"""Persistence interface and a thread-safe in-memory implementation."""

import logging
import threading
from typing import Any, Protocol, TypeVar

from pydantic import BaseModel

from models import (
    AnalysisJob,
    DebugFix,
    DebugSession,
    Metrics,
    Repository,
    Review,
    StoredIssue,
    UserSettings,
    utcnow,
)

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


class NotFoundError(KeyError):
    """No entity with the given id."""


class InvalidTransitionError(ValueError):
    """A lifecycle status change that would move backwards."""


# Allowed status moves; staying in the same status is always allowed
JOB_TRANSITIONS = {
    "queued": {"analyzing", "failed"},
    "analyzing": {"completed", "failed"},
    "completed": set(),
    "failed": set(),
}
REVIEW_TRANSITIONS = {
    "pending": {"analyzing", "failed"},
    "analyzing": {"completed", "failed"},
    "completed": set(),
    "failed": set(),
}
SESSION_TRANSITIONS = {
    "generating": {"ready", "failed"},
    "ready": {"pushed"},
    "pushed": set(),
    "failed": set(),
}
FIX_TRANSITIONS = {
    "pending": {"generating", "failed"},
    "generating": {"completed", "failed"},
    "completed": set(),
    "failed": set(),
}


def check_transition(kind: str, table: dict[str, set[str]], current: str, new: str) -> None:
    if new != current and new not in table[current]:
        raise InvalidTransitionError(f"{kind} cannot move from {current!r} to {new!r}")


class Store(Protocol):
    """Create/patch/query operations over every persisted entity."""

    def get_or_create_repository(
        self, user_id: str, owner: str, name: str, default_branch: str | None = None
    ) -> Repository: ...

    # Analysis jobs
    def create_job(self, job: AnalysisJob) -> AnalysisJob: ...
    def patch_job(self, job_id: str, **fields: Any) -> AnalysisJob: ...
    def get_job(self, job_id: str) -> AnalysisJob: ...
    def list_jobs(self, user_id: str, limit: int = 10) -> list[AnalysisJob]: ...

    # Issues
    def add_issues(self, issues: list[StoredIssue]) -> None: ...
    def list_issues(
        self, analysis_id: str | None = None, review_id: str | None = None
    ) -> list[StoredIssue]: ...

    # Reviews and metrics
    def create_review(self, review: Review) -> Review: ...
    def patch_review(self, review_id: str, **fields: Any) -> Review: ...
    def get_review(self, review_id: str) -> Review: ...
    def list_reviews(self, user_id: str, limit: int = 10) -> list[Review]: ...
    def create_metrics(self, metrics: Metrics) -> Metrics: ...
    def get_metrics(self, review_id: str) -> Metrics | None: ...

    # Settings
    def get_settings(self, user_id: str) -> UserSettings | None: ...
    def save_settings(self, settings: UserSettings) -> UserSettings: ...

    # Remediation
    def create_session(self, session: DebugSession) -> DebugSession: ...
    def patch_session(self, session_id: str, **fields: Any) -> DebugSession: ...
    def get_session(self, session_id: str) -> DebugSession: ...
    def list_sessions(self, user_id: str, limit: int = 10) -> list[DebugSession]: ...
    def add_session_issue(self, session_id: str) -> DebugSession: ...
    def create_fix(self, fix: DebugFix) -> DebugFix: ...
    def patch_fix(self, fix_id: str, **fields: Any) -> DebugFix: ...
    def get_fix(self, fix_id: str) -> DebugFix: ...
    def list_fixes(self, session_id: str) -> list[DebugFix]: ...
    def complete_fix(self, fix_id: str, **fields: Any) -> bool: ...


class InMemoryStore:
    """
    Dict-backed Store guarded by one re-entrant lock.

    Every create/patch is a single locked update and every read returns a
    deep copy, so concurrent readers only ever see whole snapshots.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._repositories: dict[str, Repository] = {}
        self._jobs: dict[str, AnalysisJob] = {}
        self._issues: list[StoredIssue] = []
        self._reviews: dict[str, Review] = {}
        self._metrics: dict[str, Metrics] = {}
        self._settings: dict[str, UserSettings] = {}
        self._sessions: dict[str, DebugSession] = {}
        self._fixes: dict[str, DebugFix] = {}

    # -----------------------------------------------------------------------
    # Generic helpers
    # -----------------------------------------------------------------------
    @staticmethod
    def _get(table: dict[str, M], kind: str, entity_id: str) -> M:
        try:
            return table[entity_id]
        except KeyError:
            raise NotFoundError(f"{kind} {entity_id} not found") from None

    def _insert(self, table: dict[str, M], entity: M) -> M:
        with self._lock:
            table[entity.id] = entity.model_copy(deep=True)
            return entity.model_copy(deep=True)

    def _patch(
        self,
        table: dict[str, M],
        kind: str,
        entity_id: str,
        transitions: dict[str, set[str]],
        fields: dict[str, Any],
    ) -> M:
        with self._lock:
            current = self._get(table, kind, entity_id)
            if "status" in fields:
                check_transition(kind, transitions, current.status, fields["status"])
            updated = current.model_copy(update=fields, deep=True)
            table[entity_id] = updated
            return updated.model_copy(deep=True)

    def _latest(self, table: dict[str, M], user_id: str, limit: int) -> list[M]:
        with self._lock:
            owned = [e for e in reversed(table.values()) if e.user_id == user_id]
            return [e.model_copy(deep=True) for e in owned[:limit]]

    # -----------------------------------------------------------------------
    # Repositories
    # -----------------------------------------------------------------------
    def get_or_create_repository(
        self, user_id: str, owner: str, name: str, default_branch: str | None = None
    ) -> Repository:
        full_name = f"{owner}/{name}"
        with self._lock:
            for repository in self._repositories.values():
                if repository.user_id == user_id and repository.full_name == full_name:
                    return repository.model_copy(deep=True)
            repository = Repository(
                user_id=user_id,
                owner=owner,
                name=name,
                full_name=full_name,
                default_branch=default_branch,
            )
            return self._insert(self._repositories, repository)

    # -----------------------------------------------------------------------
    # Analysis jobs
    # -----------------------------------------------------------------------
    def create_job(self, job: AnalysisJob) -> AnalysisJob:
        return self._insert(self._jobs, job)

    def patch_job(self, job_id: str, **fields: Any) -> AnalysisJob:
        with self._lock:
            current = self._get(self._jobs, "Analysis job", job_id)
            analyzed = fields.get("files_analyzed", current.files_analyzed)
            total = fields.get("total_files", current.total_files)
            if analyzed < current.files_analyzed:
                raise ValueError(
                    f"files_analyzed cannot decrease ({current.files_analyzed} -> {analyzed})"
                )
            if analyzed > total:
                raise ValueError(f"files_analyzed {analyzed} exceeds total_files {total}")
            return self._patch(self._jobs, "Analysis job", job_id, JOB_TRANSITIONS, fields)

    def get_job(self, job_id: str) -> AnalysisJob:
        with self._lock:
            return self._get(self._jobs, "Analysis job", job_id).model_copy(deep=True)

    def list_jobs(self, user_id: str, limit: int = 10) -> list[AnalysisJob]:
        return self._latest(self._jobs, user_id, limit)

    # -----------------------------------------------------------------------
    # Issues
    # -----------------------------------------------------------------------
    def add_issues(self, issues: list[StoredIssue]) -> None:
        for issue in issues:
            if (issue.analysis_id is None) == (issue.review_id is None):
                raise ValueError("An issue belongs to exactly one analysis job or review")
        with self._lock:
            self._issues.extend(issue.model_copy(deep=True) for issue in issues)

    def list_issues(
        self, analysis_id: str | None = None, review_id: str | None = None
    ) -> list[StoredIssue]:
        with self._lock:
            return [
                issue.model_copy(deep=True)
                for issue in self._issues
                if (analysis_id is None or issue.analysis_id == analysis_id)
                and (review_id is None or issue.review_id == review_id)
            ]

    # -----------------------------------------------------------------------
    # Reviews and metrics
    # -----------------------------------------------------------------------
    def create_review(self, review: Review) -> Review:
        return self._insert(self._reviews, review)

    def patch_review(self, review_id: str, **fields: Any) -> Review:
        return self._patch(self._reviews, "Review", review_id, REVIEW_TRANSITIONS, fields)

    def get_review(self, review_id: str) -> Review:
        with self._lock:
            return self._get(self._reviews, "Review", review_id).model_copy(deep=True)

    def list_reviews(self, user_id: str, limit: int = 10) -> list[Review]:
        return self._latest(self._reviews, user_id, limit)

    def create_metrics(self, metrics: Metrics) -> Metrics:
        with self._lock:
            self._metrics[metrics.review_id] = metrics.model_copy(deep=True)
            return metrics.model_copy(deep=True)

    def get_metrics(self, review_id: str) -> Metrics | None:
        with self._lock:
            metrics = self._metrics.get(review_id)
            return metrics.model_copy(deep=True) if metrics else None

    # -----------------------------------------------------------------------
    # Settings
    # -----------------------------------------------------------------------
    def get_settings(self, user_id: str) -> UserSettings | None:
        with self._lock:
            settings = self._settings.get(user_id)
            return settings.model_copy(deep=True) if settings else None

    def save_settings(self, settings: UserSettings) -> UserSettings:
        with self._lock:
            self._settings[settings.user_id] = settings.model_copy(deep=True)
            return settings.model_copy(deep=True)

    # -----------------------------------------------------------------------
    # Debug sessions and fixes
    # -----------------------------------------------------------------------
    def create_session(self, session: DebugSession) -> DebugSession:
        return self._insert(self._sessions, session)

    def patch_session(self, session_id: str, **fields: Any) -> DebugSession:
        return self._patch(
            self._sessions, "Debug session", session_id, SESSION_TRANSITIONS, fields
        )

    def get_session(self, session_id: str) -> DebugSession:
        with self._lock:
            return self._get(self._sessions, "Debug session", session_id).model_copy(deep=True)

    def list_sessions(self, user_id: str, limit: int = 10) -> list[DebugSession]:
        return self._latest(self._sessions, user_id, limit)

    def add_session_issue(self, session_id: str) -> DebugSession:
        """Grow a session's issue total by one."""
        with self._lock:
            session = self._get(self._sessions, "Debug session", session_id)
            return self.patch_session(session_id, total_issues=session.total_issues + 1)

    def create_fix(self, fix: DebugFix) -> DebugFix:
        with self._lock:
            self._get(self._sessions, "Debug session", fix.session_id)
            return self._insert(self._fixes, fix)

    def patch_fix(self, fix_id: str, **fields: Any) -> DebugFix:
        return self._patch(self._fixes, "Debug fix", fix_id, FIX_TRANSITIONS, fields)

    def get_fix(self, fix_id: str) -> DebugFix:
        with self._lock:
            return self._get(self._fixes, "Debug fix", fix_id).model_copy(deep=True)

    def list_fixes(self, session_id: str) -> list[DebugFix]:
        with self._lock:
            return [
                fix.model_copy(deep=True)
                for fix in self._fixes.values()
                if fix.session_id == session_id
            ]

    def complete_fix(self, fix_id: str, **fields: Any) -> bool:
        """
        Mark a fix completed and count it on its session, exactly once.

        Returns:
            True if this call performed the transition, False if the fix
            was already completed (nothing is changed in that case)
        """
        with self._lock:
            fix = self._get(self._fixes, "Debug fix", fix_id)
            if fix.status == "completed":
                logger.info("Fix %s already completed; ignoring duplicate", fix_id)
                return False

            self.patch_fix(fix_id, status="completed", completed_at=utcnow(), **fields)
            session = self._get(self._sessions, "Debug session", fix.session_id)
            self.patch_session(
                session.id,
                fixed_issues=min(session.fixed_issues + 1, session.total_issues),
            )
            return True
