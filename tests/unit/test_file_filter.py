"""Unit tests for file selection, batching and diff chunking."""

import pytest

from file_filter import (
    CODE_EXTENSIONS,
    chunk_diff,
    chunk_files,
    detect_language,
    filter_code_files,
)
from github_client import FileTreeEntry


class TestFilterCodeFiles:
    """Tests for filter_code_files."""

    def test_readme_node_modules_and_source(self) -> None:
        """Test the dependency directory is dropped even for allowed extensions."""
        tree = [
            FileTreeEntry("README.md", "blob", 500),
            FileTreeEntry("node_modules/x.js", "blob", 10),
            FileTreeEntry("src/a.ts", "blob", 2000),
        ]

        result = filter_code_files(tree)

        assert [e.path for e in result] == ["README.md", "src/a.ts"]
        assert "node_modules/x.js" not in [e.path for e in result]

    def test_directories_are_dropped(self) -> None:
        """Test tree entries that are not blobs never pass."""
        tree = [
            FileTreeEntry("src", "tree"),
            FileTreeEntry("lib.py", "commit"),
            FileTreeEntry("src/app.py", "blob", 10),
        ]

        assert [e.path for e in filter_code_files(tree)] == ["src/app.py"]

    def test_unknown_extensions_are_dropped(self) -> None:
        """Test binary and unlisted extensions are excluded."""
        tree = [
            FileTreeEntry("logo.png", "blob", 10),
            FileTreeEntry("Makefile", "blob", 10),
            FileTreeEntry("notes.txt", "blob", 10),
            FileTreeEntry("main.go", "blob", 10),
        ]

        assert [e.path for e in filter_code_files(tree)] == ["main.go"]

    @pytest.mark.parametrize(
        "path",
        [
            "dist/bundle.js",
            "web/build/app.js",
            "coverage/report.html",
            ".next/server.js",
            "vendor/lib.php",
            "package-lock.json",
            "app/yarn.lock.json",
            "static/jquery.min.js",
            "static/app.bundle.js",
        ],
    )
    def test_excluded_substrings(self, path: str) -> None:
        """Test build output, vendored code and lock files are excluded."""
        assert filter_code_files([FileTreeEntry(path, "blob", 10)]) == []

    def test_size_cap(self) -> None:
        """Test the 100000 byte limit is inclusive and unknown sizes are kept."""
        tree = [
            FileTreeEntry("at_limit.py", "blob", 100_000),
            FileTreeEntry("over_limit.py", "blob", 100_001),
            FileTreeEntry("unknown.py", "blob", None),
        ]

        assert [e.path for e in filter_code_files(tree)] == ["at_limit.py", "unknown.py"]

    def test_empty_result_is_not_an_error(self) -> None:
        """Test a tree with nothing eligible returns an empty list."""
        assert filter_code_files([FileTreeEntry("image.gif", "blob", 5)]) == []
        assert filter_code_files([]) == []

    def test_output_is_subset_of_input(self) -> None:
        """Test every returned entry comes from the input, in input order."""
        tree = [FileTreeEntry(f"src/m{i}{ext}", "blob", i) for i, ext in enumerate(CODE_EXTENSIONS)]

        result = filter_code_files(tree)

        assert result == tree
        assert all(entry in tree for entry in result)


class TestChunkFiles:
    """Tests for chunk_files."""

    def test_fixed_size_batches_preserve_order(self) -> None:
        """Test 23 items split 10/10/3 in order."""
        items = list(range(23))

        batches = chunk_files(items, 10)

        assert [len(b) for b in batches] == [10, 10, 3]
        assert [x for b in batches for x in b] == items

    def test_empty_input(self) -> None:
        """Test no files yields no batches."""
        assert chunk_files([], 10) == []

    def test_invalid_batch_size(self) -> None:
        """Test a non-positive batch size is rejected."""
        with pytest.raises(ValueError, match="batch_size"):
            chunk_files([1, 2], 0)


class TestChunkDiff:
    """Tests for chunk_diff."""

    def test_small_diff_passes_through(self) -> None:
        """Test a diff within the limit comes back as one segment."""
        diff = "+a\n-b\n"
        assert chunk_diff(diff, 100) == [diff]

    def test_splits_on_line_boundaries(self) -> None:
        """Test segments respect the limit and rejoin to the original."""
        diff = "\n".join(f"+line number {i}" for i in range(200))

        chunks = chunk_diff(diff, 120)

        assert len(chunks) > 1
        assert all(len(chunk) <= 120 for chunk in chunks)
        assert "\n".join(chunks) == diff

    def test_trailing_newline_round_trips(self) -> None:
        """Test a diff ending in a newline is reproduced exactly."""
        diff = "".join(f"+{i:03d} some changed text\n" for i in range(50))

        chunks = chunk_diff(diff, 64)

        assert "\n".join(chunks) == diff

    def test_oversized_line_stands_alone(self) -> None:
        """Test a single line longer than the limit becomes its own segment."""
        long_line = "+" + "x" * 50
        diff = f"+short\n{long_line}\n+tail"

        chunks = chunk_diff(diff, 20)

        assert long_line in chunks
        assert "\n".join(chunks) == diff
        assert all(len(c) <= 20 for c in chunks if c != long_line)


class TestDetectLanguage:
    """Tests for detect_language."""

    @pytest.mark.parametrize(
        ("path", "language"),
        [
            ("src/index.ts", "TypeScript"),
            ("App.jsx", "JavaScript React"),
            ("tool.py", "Python"),
            ("main.rs", "Rust"),
            ("styles.css", "Unknown"),
        ],
    )
    def test_first_path_decides(self, path: str, language: str) -> None:
        """Test the first file's extension names the language."""
        assert detect_language([path, "other.go"]) == language

    def test_no_files(self) -> None:
        """Test an empty file list is Unknown."""
        assert detect_language([]) == "Unknown"
