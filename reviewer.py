"""PR Review orchestration - connects GitHub + the AI provider adapter."""

import logging
import math
import time

from config import MAX_DIFF_CHARS
from diff_parser import build_line_mapping, map_issues_to_comments
from file_filter import chunk_diff, detect_language
from github_client import ReviewSubmission, SourceControl
from models import CanonicalResult, Issue, Metrics, Review, StoredIssue, utcnow
from providers import ProviderAdapter
from scoring import merge_analyses
from storage import Store

logger = logging.getLogger(__name__)

SEVERITY_ORDER = ("CRITICAL", "HIGH", "MEDIUM", "LOW")

SEVERITY_ICONS = {
    "CRITICAL": "🔴",
    "HIGH": "🟠",
    "MEDIUM": "🟡",
    "LOW": "🔵",
}

CATEGORY_ICONS = {
    "bug": "🐛",
    "security": "🔒",
    "performance": "⚡",
    "quality": "📐",
    "style": "📐",
    "architecture": "🏗️",
}

EMPTY_DIFF_RESULT = CanonicalResult(
    overall_assessment="No changes to review.",
    complexity_score=1,
    recommendation="APPROVE",
)


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------
def format_issue_comment(issue: Issue) -> str:
    """Inline comment body for one finding."""
    comment = f"{SEVERITY_ICONS[issue.severity]} **{issue.severity}** {issue.category}\n\n"
    comment += f"{issue.description}\n\n"

    if issue.suggestion:
        comment += f"💡 **Suggestion:**\n{issue.suggestion}\n\n"

    if issue.code_example:
        comment += f"**Example:**\n```\n{issue.code_example}\n```\n"

    return comment


def format_review_body(analysis: CanonicalResult) -> str:
    """Markdown summary posted as the review body."""
    lines: list[str] = ["## 🤖 RepoLens Review\n"]
    lines.append(f"**Overall Assessment:** {analysis.overall_assessment}\n")
    lines.append(f"**Complexity Score:** {analysis.complexity_score}/10\n")

    if analysis.positive_points:
        lines.append("### ✅ Positive Points")
        lines.extend(f"- {point}" for point in analysis.positive_points)
        lines.append("")

    lines.append("### 🔍 Issues Found\n")
    if not analysis.issues:
        lines.append("No issues found. Code looks good! ✨\n")

    for severity in SEVERITY_ORDER:
        issues = [issue for issue in analysis.issues if issue.severity == severity]
        if not issues:
            continue
        lines.append(f"#### {SEVERITY_ICONS[severity]} {severity} ({len(issues)})")
        for idx, issue in enumerate(issues, 1):
            line_note = f" (line {issue.line})" if issue.line else ""
            lines.append(f"{idx}. **{issue.category}** in `{issue.file or '-'}`{line_note}")
            lines.append(f"   - {issue.description}")
            if issue.suggestion:
                lines.append(f"   - 💡 Suggestion: {issue.suggestion}")
        lines.append("")

    lines.append("---")
    lines.append(f"**Recommendation:** {analysis.recommendation}")
    lines.append("\n*Generated by RepoLens 🤖*")

    return "\n".join(lines)


def build_submission(analysis: CanonicalResult, diff: str) -> ReviewSubmission:
    """
    Build the GitHub review for *analysis*.

    Findings whose line cannot be placed on the diff (within 5 lines) stay
    in the summary body only.
    """
    comments, unmapped = map_issues_to_comments(
        analysis.issues, build_line_mapping(diff), format_issue_comment
    )
    if unmapped:
        logger.info("%d finding(s) could not be placed inline", len(unmapped))

    return ReviewSubmission(
        body=format_review_body(analysis),
        event=analysis.recommendation,
        comments=comments,
    )


# ---------------------------------------------------------------------------
# Review flow
# ---------------------------------------------------------------------------
class PullRequestReviewer:
    """Analyses one pull request and records the outcome."""

    def __init__(self, source: SourceControl, adapter: ProviderAdapter, store: Store):
        self.source = source
        self.adapter = adapter
        self.store = store

    def analyze_diff(
        self, repository: str, title: str, diff: str, language: str, provider: str | None
    ) -> CanonicalResult:
        """Analyse *diff* chunk by chunk and merge the partial results."""
        if not diff.strip():
            return EMPTY_DIFF_RESULT.model_copy(deep=True)

        chunks = chunk_diff(diff, MAX_DIFF_CHARS)
        if len(chunks) > 1:
            logger.info("Large diff - splitting into %d chunks", len(chunks))

        results = []
        for i, chunk in enumerate(chunks, 1):
            logger.info("Reviewing chunk %d/%d...", i, len(chunks))
            results.append(
                self.adapter.analyze(repository, title, chunk, language, provider=provider)
            )
        return merge_analyses(results)

    def review(
        self,
        user_id: str,
        owner: str,
        repo: str,
        pr_number: int,
        provider: str | None = None,
        post: bool = True,
    ) -> Review:
        """
        Review a Pull Request end to end.

        Args:
            user_id: Owner of the stored review
            owner: Repository owner
            repo: Repository name
            pr_number: Pull request number
            provider: Override for the configured default provider
            post: Post the review back to GitHub

        Returns:
            The completed Review record

        Raises:
            Exception: Anything that stops the review; the Review is
                stored as ``failed`` with the reason first
        """
        started = time.monotonic()
        repository = self.store.get_or_create_repository(user_id, owner, repo)
        review = self.store.create_review(
            Review(
                user_id=user_id,
                repository_id=repository.id,
                pr_number=pr_number,
                pr_title="Analyzing...",
                pr_url=f"https://github.com/{owner}/{repo}/pull/{pr_number}",
                status="analyzing",
                provider=provider or self.adapter.config.provider,
            )
        )
        logger.info("Starting review of %s/%s PR #%d", owner, repo, pr_number)

        try:
            pr = self.source.get_pull_request(owner, repo, pr_number)
            logger.info("PR: %s by %s", pr.title, pr.author)
            diff = self.source.get_diff(owner, repo, pr_number)
            files = self.source.get_files(owner, repo, pr_number)

            language = detect_language([f.filename for f in files])
            merged = self.analyze_diff(f"{owner}/{repo}", pr.title, diff, language, provider)
            logger.info("Found %d issue(s) in PR #%d", len(merged.issues), pr_number)

            if post:
                self.source.post_review_with_fallback(
                    owner, repo, pr_number, build_submission(merged, diff)
                )

            if merged.issues:
                self.store.add_issues(
                    [StoredIssue(**issue.model_dump(), review_id=review.id) for issue in merged.issues]
                )
            self.store.create_metrics(
                Metrics(
                    review_id=review.id,
                    files_changed=len(files),
                    lines_added=pr.additions,
                    lines_deleted=pr.deletions,
                    analysis_time_ms=int((time.monotonic() - started) * 1000),
                    ai_tokens_used=math.ceil(len(diff) / 4),
                )
            )
            return self.store.patch_review(
                review.id,
                status="completed",
                pr_title=pr.title,
                pr_url=pr.url or review.pr_url,
                overall_assessment=merged.overall_assessment,
                complexity_score=merged.complexity_score,
                recommendation=merged.recommendation,
                analyzed_at=utcnow(),
            )

        except Exception as exc:
            logger.exception("Review of %s/%s PR #%d failed", owner, repo, pr_number)
            self.store.patch_review(
                review.id,
                status="failed",
                failure_reason=str(exc) or type(exc).__name__,
            )
            raise


def print_review(review: Review, issues: list[Issue]) -> None:
    """Pretty print a stored review."""
    print(f"\n{'=' * 60}")
    print(f"📋 {review.pr_title}")
    print(f"{'=' * 60}")
    print(f"Status: {review.status}")
    if review.overall_assessment:
        print(f"Assessment: {review.overall_assessment}")
    if review.complexity_score is not None:
        print(f"Complexity: {review.complexity_score}/10")
    print(f"Recommendation: {review.recommendation or '-'}")

    for issue in issues:
        icon = CATEGORY_ICONS.get(issue.category, "❓")
        location = f"{issue.file}:{issue.line}" if issue.line else (issue.file or "General")
        print(f"\n  {icon} [{issue.severity}] {location}")
        print(f"     {issue.description}")
        if issue.suggestion:
            print(f"     💡 Fix: {issue.suggestion}")

    print(f"\n{'=' * 60}")
    print(f"Review complete: {len(issues)} finding(s)")
    print(f"{'=' * 60}\n")
