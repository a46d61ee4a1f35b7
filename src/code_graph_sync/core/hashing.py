"""Content hashing and the run-scoped hash cache.

Digests use git's blob framing (``blob <len>\\0`` followed by the bytes), so a
file hashed directly and the blob id git already recorded for it agree. That
lets the cache take tracked, unmodified files straight from the git index
without reading their bytes.
"""

import hashlib
import os
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from loguru import logger

from ..config.defaults import DEFAULT_IGNORE_PATTERNS
from .exceptions import HashComputationError
from .git import GitError, GitManager
from .resource_manager import get_io_workers

SUPPORTED_ALGORITHMS = ("sha1", "sha256")


class ContentHasher:
    """Computes git-compatible blob digests."""

    def __init__(self, algorithm: str = "sha1"):
        if algorithm not in SUPPORTED_ALGORITHMS:
            raise ValueError(f"Unsupported hash algorithm: {algorithm}")
        self.algorithm = algorithm

    def hash(self, content: bytes) -> str:
        digest = hashlib.new(self.algorithm)
        digest.update(b"blob %d\0" % len(content))
        digest.update(content)
        return digest.hexdigest()

    def hash_file(self, path: Path) -> str:
        """Hash a file's bytes.

        Raises:
            HashComputationError: File cannot be read
        """
        try:
            return self.hash(Path(path).read_bytes())
        except OSError as e:
            raise HashComputationError(
                f"Cannot hash {path}: {e}", {"path": str(path)}
            ) from e


class HashCache:
    """Relative path to content hash for one working tree, for one run.

    Built in one bulk pass: tracked files reuse git's index blob ids; dirty and
    untracked files (or every file, outside git) are read and hashed on a
    bounded thread pool. Lookups after ``build()`` are dictionary hits.
    """

    def __init__(
        self,
        root: Path,
        use_git: bool = True,
        max_workers: int | None = None,
        ignore_patterns: Iterable[str] = DEFAULT_IGNORE_PATTERNS,
    ):
        self.root = Path(root).resolve()
        self.use_git = use_git
        self.max_workers = max_workers
        self.ignore_patterns = set(ignore_patterns)
        self.hasher = ContentHasher()
        self._hashes: dict[str, str] = {}
        self._failures: dict[str, str] = {}
        self._built = False
        self.git_backed = False

    @property
    def built(self) -> bool:
        return self._built

    def __len__(self) -> int:
        return len(self._hashes)

    def __contains__(self, path: object) -> bool:
        return isinstance(path, str) and self._key(path) in self._hashes

    def build(self) -> "HashCache":
        """Populate the cache. Safe to call again; it rebuilds from scratch."""
        self._hashes = {}
        self._failures = {}
        git = self._open_git() if self.use_git else None

        if git is not None:
            self.hasher = ContentHasher(git.get_object_format())
            try:
                tracked = git.list_blob_hashes()
                dirty = set(git.get_changed_files(include_untracked=False))
                untracked = git.list_untracked_files()
            except GitError as e:
                logger.warning(f"Git listing failed, hashing files directly: {e}")
                git = None

        if git is not None:
            self.git_backed = True
            self._hashes.update(
                {path: blob for path, blob in tracked.items() if path not in dirty}
            )
            to_read = sorted(dirty | set(untracked))
            logger.debug(
                f"Hash cache: {len(self._hashes)} from git index, "
                f"{len(to_read)} dirty/untracked to read"
            )
        else:
            self.git_backed = False
            to_read = list(self._walk())

        self._hash_files(to_read)
        self._built = True
        logger.info(
            f"Hash cache built: {len(self._hashes)} files"
            + (f", {len(self._failures)} unreadable" if self._failures else "")
        )
        return self

    def get(self, path: str) -> str:
        """Look up a file's hash.

        Args:
            path: Path relative to the cache root, or absolute under it

        Raises:
            HashComputationError: File unknown to the cache or unreadable
        """
        if not self._built:
            self.build()
        key = self._key(path)
        if key in self._hashes:
            return self._hashes[key]
        if key in self._failures:
            raise HashComputationError(self._failures[key], {"path": key})

        # Files created after the build (or outside the listing) are read now
        file_path = self.root / key
        if file_path.is_file():
            digest = self.hasher.hash_file(file_path)
            self._hashes[key] = digest
            return digest
        raise HashComputationError(
            f"No such file under {self.root}: {key}", {"path": key}
        )

    def items(self) -> Iterable[tuple[str, str]]:
        return self._hashes.items()

    def _key(self, path: str) -> str:
        p = Path(path)
        if p.is_absolute():
            try:
                p = p.resolve().relative_to(self.root)
            except ValueError:
                return p.as_posix()
        return p.as_posix().removeprefix("./")

    def _open_git(self) -> GitManager | None:
        try:
            return GitManager(self.root)
        except GitError as e:
            logger.debug(f"Not using git for hashing: {e}")
            return None

    def _walk(self) -> Iterable[str]:
        for dirpath, dirnames, filenames in os.walk(self.root):
            dirnames[:] = [d for d in dirnames if d not in self.ignore_patterns]
            rel_dir = Path(dirpath).relative_to(self.root)
            for name in filenames:
                yield (rel_dir / name).as_posix()

    def _hash_files(self, paths: list[str]) -> None:
        if not paths:
            return

        def hash_one(rel: str) -> tuple[str, str | None, str | None]:
            try:
                return rel, self.hasher.hash_file(self.root / rel), None
            except HashComputationError as e:
                return rel, None, str(e)

        workers = self.max_workers or get_io_workers(len(paths))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            for rel, digest, error in pool.map(hash_one, paths):
                if digest is not None:
                    self._hashes[rel] = digest
                else:
                    logger.warning(error)
                    self._failures[rel] = error
