"""GitHub API client for repository, pull request and branch operations."""

import os
import logging
from dataclasses import dataclass, field
from typing import Protocol

import requests
import requests.exceptions
from github import Auth, Github
from github.GithubException import GithubException
from github.Repository import Repository as GithubRepository

from config import validate_repo, with_retry

logger = logging.getLogger(__name__)


class BranchNotFoundError(ValueError):
    """The requested branch (or tree-ish) does not exist in the repository."""


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------
@dataclass
class FileTreeEntry:
    """One entry of a recursive repository tree listing."""

    path: str
    type: str  # blob, tree, commit (submodule)
    size: int | None = None  # bytes; None for trees or when unknown


@dataclass
class PRMetadata:
    """Pull Request metadata."""

    number: int
    title: str
    author: str
    draft: bool
    state: str
    base_branch: str
    head_branch: str
    description: str | None
    url: str = ""
    additions: int = 0
    deletions: int = 0
    changed_files: int = 0


@dataclass
class ChangedFile:
    """One file entry of a PR's file listing."""

    filename: str
    status: str  # added | removed | modified | renamed
    additions: int
    deletions: int
    changes: int
    patch: str | None  # absent for binary or very large files


@dataclass
class ReviewComment:
    """Inline comment anchored to a line of the new file version."""

    path: str
    line: int
    body: str
    side: str = "RIGHT"


@dataclass
class ReviewSubmission:
    """Summary body, verdict and inline comments posted as one review."""

    body: str = ""
    event: str = "COMMENT"  # mirrors the analysis recommendation
    comments: list[ReviewComment] = field(default_factory=list)


class SourceControl(Protocol):
    """Source-control operations the analysis pipeline depends on."""

    def get_default_branch(self, owner: str, repo: str) -> str: ...

    def get_repository_tree(
        self, owner: str, repo: str, branch: str
    ) -> list[FileTreeEntry]: ...

    def get_file_content(self, owner: str, repo: str, path: str) -> str: ...

    def get_pull_request(self, owner: str, repo: str, pr_number: int) -> PRMetadata: ...

    def get_diff(self, owner: str, repo: str, pr_number: int) -> str: ...

    def get_files(self, owner: str, repo: str, pr_number: int) -> list[ChangedFile]: ...

    def get_branch_sha(self, owner: str, repo: str, branch: str) -> str: ...

    def create_branch(self, owner: str, repo: str, name: str, from_sha: str) -> None: ...

    def get_file_sha(
        self, owner: str, repo: str, path: str, ref: str
    ) -> str | None: ...

    def update_file(
        self,
        owner: str,
        repo: str,
        path: str,
        content: str,
        sha: str | None,
        branch: str,
        message: str,
    ) -> str: ...

    def post_review_with_fallback(
        self, owner: str, repo: str, pr_number: int, review: ReviewSubmission
    ) -> dict: ...


def _error_message(e: GithubException) -> str:
    data = e.data if isinstance(e.data, dict) else {}
    return data.get("message", str(e))


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------
class GitHubClient:
    """
    Thin wrapper over PyGithub scoped to one user's token.

    Every GitHub failure is re-raised as ``ValueError`` with a readable
    message; the original ``GithubException`` is chained.
    """

    def __init__(self, token: str):
        if not token:
            raise ValueError("A GitHub token is required")
        self._token = token
        self._github = Github(auth=Auth.Token(token))
        self._repos: dict[str, GithubRepository] = {}

    @classmethod
    def from_env(cls) -> "GitHubClient":
        """Build a client from the ``GITHUB_TOKEN`` environment variable."""
        token = os.getenv("GITHUB_TOKEN")
        if not token:
            raise ValueError(
                "GITHUB_TOKEN not found. Set it in .env file.\n"
                "Get your token at: https://github.com/settings/tokens"
            )
        return cls(token)

    def _repo(self, owner: str, repo: str) -> GithubRepository:
        full_name = validate_repo(f"{owner}/{repo}")
        if full_name not in self._repos:
            try:
                self._repos[full_name] = self._github.get_repo(full_name)
            except GithubException as e:
                if e.status == 404:
                    raise ValueError(f"Repository {full_name} not found") from e
                raise ValueError(f"GitHub API error: {_error_message(e)}") from e
        return self._repos[full_name]

    # -----------------------------------------------------------------------
    # Repository reads
    # -----------------------------------------------------------------------
    def get_default_branch(self, owner: str, repo: str) -> str:
        return self._repo(owner, repo).default_branch

    def get_repository_tree(
        self, owner: str, repo: str, branch: str
    ) -> list[FileTreeEntry]:
        """
        List every entry of *branch* recursively.

        Raises:
            BranchNotFoundError: If the branch does not resolve to a tree
            ValueError: For any other API failure
        """
        repository = self._repo(owner, repo)
        try:
            tree = repository.get_git_tree(branch, recursive=True)
        except GithubException as e:
            if e.status in (404, 409, 422):
                raise BranchNotFoundError(
                    f"Branch {branch!r} not found in {owner}/{repo}"
                ) from e
            raise ValueError(f"GitHub API error: {_error_message(e)}") from e

        if tree.raw_data.get("truncated"):
            logger.warning("Tree for %s/%s@%s was truncated by GitHub", owner, repo, branch)

        return [
            FileTreeEntry(path=element.path, type=element.type, size=element.size)
            for element in tree.tree
        ]

    def get_file_content(
        self, owner: str, repo: str, path: str, ref: str | None = None
    ) -> str:
        repository = self._repo(owner, repo)
        try:
            if ref:
                contents = repository.get_contents(path, ref=ref)
            else:
                contents = repository.get_contents(path)
        except GithubException as e:
            if e.status == 404:
                raise ValueError(f"File {path} not found in {owner}/{repo}") from e
            raise ValueError(f"GitHub API error: {_error_message(e)}") from e

        if isinstance(contents, list):
            raise ValueError(f"{path} is a directory, not a file")
        return contents.decoded_content.decode("utf-8", errors="replace")

    # -----------------------------------------------------------------------
    # Pull request reads
    # -----------------------------------------------------------------------
    def get_pull_request(self, owner: str, repo: str, pr_number: int) -> PRMetadata:
        """
        Fetch PR metadata from GitHub.

        Raises:
            ValueError: If PR not found or access denied
        """
        repository = self._repo(owner, repo)
        try:
            pr = repository.get_pull(pr_number)
            return PRMetadata(
                number=pr.number,
                title=pr.title,
                author=pr.user.login,
                draft=pr.draft,
                state=pr.state,
                base_branch=pr.base.ref,
                head_branch=pr.head.ref,
                description=pr.body,
                url=pr.html_url,
                additions=pr.additions,
                deletions=pr.deletions,
                changed_files=pr.changed_files,
            )
        except GithubException as e:
            if e.status == 404:
                raise ValueError(f"PR #{pr_number} not found in {owner}/{repo}") from e
            raise ValueError(f"GitHub API error: {_error_message(e)}") from e

    def get_files(self, owner: str, repo: str, pr_number: int) -> list[ChangedFile]:
        repository = self._repo(owner, repo)
        try:
            pr = repository.get_pull(pr_number)
            return [
                ChangedFile(
                    filename=file.filename,
                    status=file.status,
                    additions=file.additions,
                    deletions=file.deletions,
                    changes=file.changes,
                    patch=file.patch,
                )
                for file in pr.get_files()
            ]
        except GithubException as e:
            if e.status == 404:
                raise ValueError(f"PR #{pr_number} not found in {owner}/{repo}") from e
            raise ValueError(f"GitHub API error: {_error_message(e)}") from e

    @with_retry(
        max_retries=3,
        base_delay=1.0,
        retryable=(
            requests.exceptions.ConnectionError,
            requests.exceptions.Timeout,
        ),
    )
    def get_diff(self, owner: str, repo: str, pr_number: int) -> str:
        """Whole-PR unified diff, requested from the REST API in diff media type."""
        full_name = validate_repo(f"{owner}/{repo}")
        url = f"https://api.github.com/repos/{full_name}/pulls/{pr_number}"
        headers = {
            "Authorization": f"token {self._token}",
            "Accept": "application/vnd.github.v3.diff",
        }

        response = requests.get(url, headers=headers, timeout=30)

        if response.status_code == 404:
            raise ValueError(f"PR #{pr_number} not found in {full_name}")
        response.raise_for_status()

        return response.text

    # -----------------------------------------------------------------------
    # Branch and file writes
    # -----------------------------------------------------------------------
    def get_branch_sha(self, owner: str, repo: str, branch: str) -> str:
        repository = self._repo(owner, repo)
        try:
            return repository.get_branch(branch).commit.sha
        except GithubException as e:
            if e.status == 404:
                raise BranchNotFoundError(
                    f"Branch {branch!r} not found in {owner}/{repo}"
                ) from e
            raise ValueError(f"GitHub API error: {_error_message(e)}") from e

    def create_branch(self, owner: str, repo: str, name: str, from_sha: str) -> None:
        repository = self._repo(owner, repo)
        try:
            repository.create_git_ref(ref=f"refs/heads/{name}", sha=from_sha)
        except GithubException as e:
            raise ValueError(
                f"Failed to create branch {name}: {_error_message(e)}"
            ) from e
        logger.info("Created branch %s in %s/%s at %s", name, owner, repo, from_sha[:7])

    def get_file_sha(self, owner: str, repo: str, path: str, ref: str) -> str | None:
        """Blob SHA of *path* on *ref*, or None when the file does not exist."""
        repository = self._repo(owner, repo)
        try:
            contents = repository.get_contents(path, ref=ref)
        except GithubException as e:
            if e.status == 404:
                return None
            raise ValueError(f"GitHub API error: {_error_message(e)}") from e
        if isinstance(contents, list):
            raise ValueError(f"{path} is a directory, not a file")
        return contents.sha

    def update_file(
        self,
        owner: str,
        repo: str,
        path: str,
        content: str,
        sha: str | None,
        branch: str,
        message: str,
    ) -> str:
        """
        Write *content* to *path* on *branch*, creating the file when *sha* is None.

        Returns:
            SHA of the resulting commit
        """
        repository = self._repo(owner, repo)
        try:
            if sha:
                result = repository.update_file(path, message, content, sha, branch=branch)
            else:
                result = repository.create_file(path, message, content, branch=branch)
        except GithubException as e:
            raise ValueError(
                f"Failed to update {path}: {_error_message(e)}"
            ) from e
        return result["commit"].sha


    # -----------------------------------------------------------------------
    # Review writes
    # -----------------------------------------------------------------------
    def post_pr_comment(self, owner: str, repo: str, pr_number: int, body: str) -> int:
        """Add a conversation comment to the PR and return its id."""
        repository = self._repo(owner, repo)
        try:
            comment = repository.get_pull(pr_number).create_issue_comment(body)
        except GithubException as e:
            raise ValueError(f"Failed to post comment: {_error_message(e)}") from e
        logger.info("Commented on %s/%s PR #%d (comment %d)", owner, repo, pr_number, comment.id)
        return comment.id

    def post_review(
        self, owner: str, repo: str, pr_number: int, review: ReviewSubmission
    ) -> int:
        """
        Submit *review* against the PR head commit and return its id.

        Raises:
            ValueError: If GitHub rejects the review (typically an inline
                comment on a line outside the diff)
        """
        repository = self._repo(owner, repo)
        try:
            pr = repository.get_pull(pr_number)
            posted = pr.create_review(
                commit=repository.get_commit(pr.head.sha),
                body=review.body,
                event=review.event,
                comments=[
                    {"path": c.path, "line": c.line, "side": c.side, "body": c.body}
                    for c in review.comments
                ],
            )
        except GithubException as e:
            details = e.data.get("errors", []) if isinstance(e.data, dict) else []
            logger.error(
                "Review on %s/%s PR #%d rejected: %s %s",
                owner,
                repo,
                pr_number,
                _error_message(e),
                details,
            )
            raise ValueError(f"Failed to post review: {_error_message(e)}") from e

        logger.info(
            "Posted %s review %d on PR #%d with %d inline comment(s)",
            review.event,
            posted.id,
            pr_number,
            len(review.comments),
        )
        return posted.id

    def post_review_with_fallback(
        self, owner: str, repo: str, pr_number: int, review: ReviewSubmission
    ) -> dict:
        """
        Submit *review*; if the inline comments are rejected, post the whole
        thing as one conversation comment instead.

        Returns:
            ``{"review_id": ..., "fallback": False}`` or
            ``{"comment_id": ..., "fallback": True}``
        """
        try:
            return {"review_id": self.post_review(owner, repo, pr_number, review), "fallback": False}
        except ValueError as e:
            if not review.comments:
                raise
            logger.warning("Inline review rejected, posting as a comment: %s", e)

        comment_id = self.post_pr_comment(owner, repo, pr_number, inline_fallback_body(review))
        return {"comment_id": comment_id, "fallback": True}


def inline_fallback_body(review: ReviewSubmission) -> str:
    """Review body followed by every inline comment, quoted under its location."""
    parts = [review.body] if review.body else []
    parts.append("## Inline Comments\n\n_Could not attach these to the diff:_")
    parts.extend(f"**{c.path}** (line {c.line}):\n> {c.body}" for c in review.comments)
    return "\n\n".join(parts) + "\n"
