"""Selection of analysable files and batching of files and diffs."""

import logging
import posixpath
from collections.abc import Sequence
from typing import TypeVar

from config import MAX_FILE_SIZE
from github_client import FileTreeEntry

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Source, config and doc extensions worth sending to a reviewer
CODE_EXTENSIONS = (
    '.js', '.ts', '.jsx', '.tsx', '.py', '.java', '.go', '.rs', '.rb',   # Languages
    '.php', '.c', '.cpp', '.h', '.hpp', '.cs', '.swift', '.kt', '.scala',
    '.vue', '.svelte', '.html', '.css', '.scss', '.sass', '.less',       # Web
    '.json', '.yml', '.yaml', '.xml', '.md',                             # Config / docs
    '.sql', '.sh', '.bash',                                              # Scripts
)

# Path substrings that mark build output, dependencies and lock files
EXCLUDE_PATTERNS = (
    'node_modules/', 'dist/', 'build/', '.git/', 'coverage/',
    '.next/', 'out/', 'vendor/',
    'package-lock.json', 'yarn.lock', 'pnpm-lock.yaml',
    '.min.js', '.bundle.js',
)

LANGUAGES = {
    'ts': 'TypeScript',
    'js': 'JavaScript',
    'tsx': 'TypeScript React',
    'jsx': 'JavaScript React',
    'py': 'Python',
    'java': 'Java',
    'go': 'Go',
    'rs': 'Rust',
    'rb': 'Ruby',
}


def has_code_extension(path: str) -> bool:
    return path.endswith(CODE_EXTENSIONS)


def is_excluded(path: str) -> bool:
    return any(pattern in path for pattern in EXCLUDE_PATTERNS)


def filter_code_files(
    tree: Sequence[FileTreeEntry],
    max_size: int = MAX_FILE_SIZE,
) -> list[FileTreeEntry]:
    """
    Pick the repository files worth analysing.

    Rules, in order: files only (no trees/submodules), allow-listed
    extension, no excluded path substring, declared size within *max_size*
    (entries with unknown size are kept).

    Returns an empty list when nothing qualifies; callers treat that as
    "nothing to analyse", not as an error.
    """
    blobs = [entry for entry in tree if entry.type == "blob"]
    with_code_ext = [entry for entry in blobs if has_code_extension(entry.path)]
    not_excluded = [entry for entry in with_code_ext if not is_excluded(entry.path)]
    size_filtered = [
        entry for entry in not_excluded
        if entry.size is None or entry.size <= max_size
    ]

    logger.info(
        "[Filter] %d tree items -> %d blobs -> %d code -> %d not excluded -> %d within size",
        len(tree),
        len(blobs),
        len(with_code_ext),
        len(not_excluded),
        len(size_filtered),
    )

    if not size_filtered and tree:
        logger.warning(
            "[Filter] No files passed filtering! Sample tree items: %s",
            [(entry.path, entry.type, entry.size) for entry in tree[:10]],
        )

    return size_filtered


def chunk_files(files: Sequence[T], batch_size: int) -> list[list[T]]:
    """Split *files* into consecutive batches of at most *batch_size*."""
    if batch_size < 1:
        raise ValueError(f"batch_size must be positive, got {batch_size}")
    return [list(files[i : i + batch_size]) for i in range(0, len(files), batch_size)]


def chunk_diff(diff_text: str, max_chars: int) -> list[str]:
    """
    Split a long diff into segments at line boundaries.

    Segments are joined back with a newline: ``"\\n".join(chunks)`` equals
    *diff_text*. A segment exceeds *max_chars* only when it is a single line
    that is longer than the limit on its own.

    Args:
        diff_text: Unified diff (or any text)
        max_chars: Maximum segment length

    Returns:
        List of segments; ``[diff_text]`` when it already fits
    """
    if max_chars < 1:
        raise ValueError(f"max_chars must be positive, got {max_chars}")
    if len(diff_text) <= max_chars:
        return [diff_text]

    chunks: list[str] = []
    current: list[str] = []
    current_chars = 0

    for line in diff_text.split("\n"):
        # +1 for the newline that re-joins this line to the previous one
        added = len(line) + (1 if current else 0)

        if current and current_chars + added > max_chars:
            chunks.append("\n".join(current))
            current = [line]
            current_chars = len(line)
        else:
            current.append(line)
            current_chars += added

    if current:
        chunks.append("\n".join(current))

    return chunks


def detect_language(paths: Sequence[str]) -> str:
    """Name the primary language from the first path's extension."""
    if not paths:
        return "Unknown"
    ext = posixpath.splitext(paths[0])[1].lstrip(".").lower()
    return LANGUAGES.get(ext, "Unknown")
