"""Tests for git-compatible content hashing and the hash cache."""

import hashlib
import os
import shutil
import subprocess

import pytest

from code_graph_sync.core.exceptions import HashComputationError
from code_graph_sync.core.hashing import ContentHasher, HashCache

requires_git = pytest.mark.skipif(
    shutil.which("git") is None, reason="git not installed"
)


def git(cwd, *args):
    subprocess.run(
        ["git", *args],
        cwd=cwd,
        check=True,
        capture_output=True,
        env={
            "GIT_AUTHOR_NAME": "Test",
            "GIT_AUTHOR_EMAIL": "test@example.com",
            "GIT_COMMITTER_NAME": "Test",
            "GIT_COMMITTER_EMAIL": "test@example.com",
            "HOME": str(cwd),
            "PATH": os.environ.get("PATH", ""),
        },
    )


class TestContentHasher:
    def test_git_blob_framing(self):
        # Well-known blob id of "hello\n"
        assert ContentHasher().hash(b"hello\n") == (
            "ce013625030ba8dba906f756967f9e9ca394464a"
        )

    def test_empty_blob(self):
        assert ContentHasher().hash(b"") == "e69de29bb2d1d6434b8b29ae775ad8c2e48c5391"

    def test_sha256(self):
        expected = hashlib.sha256(b"blob 3\0abc").hexdigest()
        assert ContentHasher("sha256").hash(b"abc") == expected

    def test_unsupported_algorithm(self):
        with pytest.raises(ValueError):
            ContentHasher("md5")

    def test_hash_file_missing(self, tmp_path):
        with pytest.raises(HashComputationError):
            ContentHasher().hash_file(tmp_path / "missing.txt")


class TestHashCacheWithoutGit:
    def test_walks_tree(self, temp_project_dir):
        (temp_project_dir / "src").mkdir()
        (temp_project_dir / "src" / "Foo.java").write_bytes(b"class Foo {}\n")
        (temp_project_dir / "node_modules").mkdir()
        (temp_project_dir / "node_modules" / "x.js").write_bytes(b"x")

        cache = HashCache(temp_project_dir, use_git=False).build()

        assert cache.built
        assert not cache.git_backed
        assert "src/Foo.java" in cache
        assert "node_modules/x.js" not in cache
        assert cache.get("src/Foo.java") == ContentHasher().hash(b"class Foo {}\n")

    def test_lookup_by_absolute_path(self, temp_project_dir):
        target = temp_project_dir / "a.txt"
        target.write_bytes(b"a")
        cache = HashCache(temp_project_dir, use_git=False)
        assert cache.get(str(target)) == cache.get("a.txt")

    def test_lazy_build_and_late_files(self, temp_project_dir):
        cache = HashCache(temp_project_dir, use_git=False)
        assert not cache.built
        cache.build()
        (temp_project_dir / "late.txt").write_bytes(b"late")
        assert cache.get("late.txt") == ContentHasher().hash(b"late")

    def test_unknown_file(self, temp_project_dir):
        cache = HashCache(temp_project_dir, use_git=False).build()
        with pytest.raises(HashComputationError):
            cache.get("missing.txt")


@requires_git
class TestHashCacheWithGit:
    @pytest.fixture
    def repo(self, temp_project_dir):
        git(temp_project_dir, "init", "-q")
        (temp_project_dir / "clean.txt").write_bytes(b"clean\n")
        (temp_project_dir / "dirty.txt").write_bytes(b"v1\n")
        git(temp_project_dir, "add", ".")
        git(temp_project_dir, "commit", "-q", "-m", "init")
        (temp_project_dir / "dirty.txt").write_bytes(b"v2\n")
        (temp_project_dir / "new.txt").write_bytes(b"new\n")
        return temp_project_dir

    def test_index_and_direct_hashes_agree(self, repo):
        cache = HashCache(repo).build()
        hasher = ContentHasher(cache.hasher.algorithm)

        assert cache.git_backed
        assert cache.get("clean.txt") == hasher.hash(b"clean\n")
        assert cache.get("dirty.txt") == hasher.hash(b"v2\n")
        assert cache.get("new.txt") == hasher.hash(b"new\n")
        assert len(cache) == 3

    def test_unchanged_file_same_hash_across_builds(self, repo):
        first = HashCache(repo).build().get("clean.txt")
        second = HashCache(repo).build().get("clean.txt")
        assert first == second
