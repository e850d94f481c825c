"""Shared pytest fixtures for RepoLens tests.

Nothing here touches the network:
- FakeSource stands in for the GitHub client
- ScriptedTransport stands in for the provider SDK calls
- InMemoryStore is the real store
"""

import json
from typing import Any

import pytest

from github_client import (
    BranchNotFoundError,
    ChangedFile,
    FileTreeEntry,
    PRMetadata,
    ReviewSubmission,
)
from providers import ClaudeBlock, ClaudeRaw, GeminiRaw, OpenAIRaw, ProviderAdapter, ProviderConfig
from storage import InMemoryStore

# =============================================================================
# Source control fake
# =============================================================================


class FakeSource:
    """In-memory stand-in for GitHubClient."""

    def __init__(self) -> None:
        self.default_branch = "main"
        self.trees: dict[str, list[FileTreeEntry]] = {"main": []}
        self.contents: dict[str, str] = {}
        self.failing_paths: set[str] = set()
        self.tree_requests: list[str] = []

        self.pr = PRMetadata(
            number=7,
            title="Add stats helper",
            author="octocat",
            draft=False,
            state="open",
            base_branch="main",
            head_branch="feature/stats",
            description=None,
            url="https://github.com/acme/widgets/pull/7",
            additions=4,
            deletions=1,
            changed_files=1,
        )
        self.diff = ""
        self.changed_files: list[ChangedFile] = []
        self.posted: list[ReviewSubmission] = []

        self.branches: dict[str, str] = {"main": "base-sha"}
        self.failing_writes: set[str] = set()
        self.writes: list[tuple[str, str, str, str | None]] = []
        self._commits = 0

    def get_default_branch(self, owner: str, repo: str) -> str:
        return self.default_branch

    def get_repository_tree(self, owner: str, repo: str, branch: str) -> list[FileTreeEntry]:
        self.tree_requests.append(branch)
        if branch not in self.trees:
            raise BranchNotFoundError(f"Branch {branch!r} not found in {owner}/{repo}")
        return list(self.trees[branch])

    def get_file_content(self, owner: str, repo: str, path: str) -> str:
        if path in self.failing_paths:
            raise ValueError(f"File {path} not found in {owner}/{repo}")
        return self.contents.get(path, f"print('{path}')\n")

    def get_pull_request(self, owner: str, repo: str, pr_number: int) -> PRMetadata:
        return self.pr

    def get_diff(self, owner: str, repo: str, pr_number: int) -> str:
        return self.diff

    def get_files(self, owner: str, repo: str, pr_number: int) -> list[ChangedFile]:
        return self.changed_files

    def get_branch_sha(self, owner: str, repo: str, branch: str) -> str:
        if branch not in self.branches:
            raise BranchNotFoundError(f"Branch {branch!r} not found in {owner}/{repo}")
        return self.branches[branch]

    def create_branch(self, owner: str, repo: str, name: str, from_sha: str) -> None:
        self.branches[name] = from_sha

    def get_file_sha(self, owner: str, repo: str, path: str, ref: str) -> str | None:
        return f"blob-{path}"

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
        if path in self.failing_writes:
            raise ValueError(f"Failed to update {path}: conflict")
        self._commits += 1
        commit_sha = f"commit-{self._commits}"
        self.branches[branch] = commit_sha
        self.writes.append((path, content, branch, sha))
        return commit_sha

    def post_review_with_fallback(
        self, owner: str, repo: str, pr_number: int, review: ReviewSubmission
    ) -> dict:
        self.posted.append(review)
        return {"review_id": 1, "fallback": False}


# =============================================================================
# Provider transport fake
# =============================================================================


def raw_response(provider: str, text: str):
    if provider == "openai":
        return OpenAIRaw(content=text, finish_reason="stop")
    if provider == "claude":
        return ClaudeRaw(blocks=[ClaudeBlock(type="text", text=text)])
    return GeminiRaw(text=text)


class ScriptedTransport:
    """Replays canned responses (or raises) and records every prompt."""

    def __init__(self, provider: str, responses: list[str] | None = None) -> None:
        self.provider = provider
        self.responses = list(responses or [])
        self.error: Exception | None = None
        self.prompts: list[str] = []
        self.json_modes: list[bool] = []

    def __call__(self, api_key: str, prompt: str, json_mode: bool):
        self.prompts.append(prompt)
        self.json_modes.append(json_mode)
        if self.error is not None:
            raise self.error
        # The last response repeats once the script runs out
        text = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        return raw_response(self.provider, text)

    @property
    def calls(self) -> int:
        return len(self.prompts)


def make_analysis_json(
    issues: list[dict[str, Any]] | None = None,
    recommendation: str = "COMMENT",
    complexity: int = 3,
    assessment: str = "Looks reasonable.",
    positive_points: list[str] | None = None,
) -> str:
    return json.dumps(
        {
            "overall_assessment": assessment,
            "complexity_score": complexity,
            "issues": issues or [],
            "positive_points": positive_points or [],
            "recommendation": recommendation,
        }
    )


def make_issue(
    severity: str = "MEDIUM",
    type: str = "bug",
    file: str = "src/a.ts",
    line: int | None = 3,
    description: str = "Possible null dereference",
) -> dict[str, Any]:
    return {
        "severity": severity,
        "type": type,
        "file": file,
        "line": line,
        "description": description,
        "suggestion": "Guard against null",
    }


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def source() -> FakeSource:
    return FakeSource()


@pytest.fixture
def analysis_json():
    """Factory for provider analysis responses."""
    return make_analysis_json


@pytest.fixture
def issue_dict():
    """Factory for raw issue dicts as a provider would return them."""
    return make_issue


@pytest.fixture
def transports() -> dict[str, ScriptedTransport]:
    """One scripted transport per provider, each answering with no issues."""
    return {
        name: ScriptedTransport(name, [make_analysis_json(assessment=f"{name} says ok")])
        for name in ("openai", "claude", "gemini")
    }


@pytest.fixture
def provider_config() -> ProviderConfig:
    return ProviderConfig(
        provider="openai",
        openai_key="sk-openai",
        anthropic_key="sk-anthropic",
        gemini_key="gemini-key",
    )


@pytest.fixture
def adapter(provider_config, transports) -> ProviderAdapter:
    return ProviderAdapter(provider_config, transports=transports, mock=False)
