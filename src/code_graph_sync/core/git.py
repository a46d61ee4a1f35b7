"""Git integration for content hashing and repository metadata.

This module provides the GitManager class, a thin subprocess wrapper over the
git commands the sync pipeline needs: the blob ids of tracked files (so the
hash cache never reads unchanged bytes), the dirty and untracked files that
must be hashed directly, the object format of the repository, and the
metadata recorded on Repository nodes.

Design Decisions:
    - Uses subprocess to call git commands (standard approach, no dependencies)
    - Paths returned by listing commands are relative POSIX strings, the
      same keys the hash cache is looked up with
    - ``-z`` output everywhere a path is parsed, so unusual file names survive

Error Handling:
    All git operations are wrapped with proper exception handling:
    - GitNotAvailableError: Git binary not found in PATH
    - GitNotRepoError: Not a git repository
    - GitError: General git operation failures
"""

import re
import subprocess
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from .descriptors import EntityDescriptor
from .exceptions import CodeGraphSyncError
from .identity import escape_segment
from .models import EntityKind


class GitError(CodeGraphSyncError):
    """Base exception for git-related errors."""

    pass


class GitNotAvailableError(GitError):
    """Git binary is not available in PATH."""

    pass


class GitNotRepoError(GitError):
    """Directory is not a git repository."""

    pass


# Matches "github.com/org/repo", "github.com:org/repo.git", gitlab likewise
_HOSTED_REMOTE = re.compile(r"(?:github|gitlab)\.com[/:]([^/]+)/")


@dataclass
class RepositoryMetadata:
    """Facts about the repository a working tree belongs to."""

    name: str
    path: str
    remote_url: str | None = None
    organization: str | None = None
    branch: str | None = None
    commit_hash: str | None = None
    commit_date: str | None = None

    def to_properties(self) -> dict[str, str]:
        props = {
            "name": self.name,
            "path": self.path,
            "remoteUrl": self.remote_url,
            "organization": self.organization,
            "branch": self.branch,
            "commitHash": self.commit_hash,
            "commitDate": self.commit_date,
        }
        return {k: v for k, v in props.items() if v is not None}

    def to_descriptor(self) -> EntityDescriptor:
        # Volatile facts (branch, head) are properties, so a new commit is an UPDATE
        return EntityDescriptor(
            kind=EntityKind.REPOSITORY,
            local_name=escape_segment(self.name),
            disambiguator=self.path,
            properties=self.to_properties(),
        )


def extract_organization(remote_url: str | None) -> str | None:
    """Pull the organization out of a GitHub or GitLab remote URL."""
    if not remote_url:
        return None
    match = _HOSTED_REMOTE.search(remote_url)
    return match.group(1) if match else None


class GitManager:
    """Manage the git operations used while syncing a working tree.

    No caching: every call goes to git, and the hash cache built from these
    calls is itself run-scoped.

    Example:
        >>> manager = GitManager(Path("/path/to/repo"))
        >>> blobs = manager.list_blob_hashes()
        >>> print(f"{len(blobs)} tracked files")
    """

    def __init__(self, project_root: Path):
        """Initialize git manager.

        Args:
            project_root: Root directory of the working tree

        Raises:
            GitNotAvailableError: If git binary is not available
            GitNotRepoError: If project_root is not a git repository
        """
        self.project_root = Path(project_root).resolve()

        if not self.is_git_available():
            raise GitNotAvailableError("Git binary not found in PATH")

        if not self.is_git_repo():
            raise GitNotRepoError(
                f"Not a git repository: {self.project_root}",
                {"path": str(self.project_root)},
            )

    def is_git_available(self) -> bool:
        """Check if git command is available in PATH."""
        try:
            subprocess.run(  # nosec B607 - git is intentionally called via PATH
                ["git", "--version"],
                capture_output=True,
                check=True,
                timeout=5,
            )
            return True
        except (
            subprocess.CalledProcessError,
            FileNotFoundError,
            subprocess.TimeoutExpired,
        ):
            return False

    def is_git_repo(self) -> bool:
        """Check if project directory is inside a git work tree."""
        try:
            result = subprocess.run(  # nosec B607 - git is intentionally called via PATH
                ["git", "rev-parse", "--is-inside-work-tree"],
                cwd=self.project_root,
                capture_output=True,
                text=True,
                check=True,
                timeout=5,
            )
            return result.stdout.strip() == "true"
        except (
            subprocess.CalledProcessError,
            FileNotFoundError,
            subprocess.TimeoutExpired,
        ):
            return False

    def _run(self, args: list[str], timeout: int = 30) -> bytes:
        """Run a git command in the project root and return raw stdout."""
        cmd = ["git", *args]
        try:
            result = subprocess.run(  # nosec B607 - git is intentionally called via PATH
                cmd,
                cwd=self.project_root,
                capture_output=True,
                check=True,
                timeout=timeout,
            )
            return result.stdout
        except subprocess.CalledProcessError as e:
            error_msg = e.stderr.decode(errors="replace").strip() if e.stderr else ""
            logger.error(f"git {args[0]} failed: {error_msg or 'Unknown error'}")
            raise GitError(
                f"git {' '.join(args)} failed: {error_msg or 'Unknown error'}"
            ) from e
        except subprocess.TimeoutExpired as e:
            logger.error(f"git {args[0]} timed out")
            raise GitError(
                f"git {' '.join(args)} timed out after {timeout} seconds"
            ) from e
        except FileNotFoundError as e:
            raise GitNotAvailableError("git binary not found") from e

    def _run_text(self, args: list[str], timeout: int = 10) -> str | None:
        """Like ``_run`` but returns stripped text, or None on any git error."""
        try:
            return self._run(args, timeout=timeout).decode().strip() or None
        except GitError:
            return None

    def get_object_format(self) -> str:
        """Return the repository hash algorithm, ``sha1`` or ``sha256``."""
        value = self._run_text(["rev-parse", "--show-object-format"])
        # Git older than 2.29 does not know the flag; those repos are sha1
        return value if value in ("sha1", "sha256") else "sha1"

    def list_blob_hashes(self) -> dict[str, str]:
        """Map every tracked file (relative POSIX path) to its index blob id.

        Parses ``git ls-files -s -z``; each record reads
        ``<mode> <object> <stage>\\t<path>``. Only stage 0 entries are kept,
        files in the middle of a merge conflict are hashed directly instead.
        """
        output = self._run(["ls-files", "-s", "-z"], timeout=60)
        blobs: dict[str, str] = {}
        for record in output.split(b"\0"):
            if not record:
                continue
            meta, _, path = record.partition(b"\t")
            parts = meta.split()
            if len(parts) != 3:
                logger.debug(f"Skipping unparseable ls-files record: {record!r}")
                continue
            mode, obj, stage = parts
            # 160000 is a submodule gitlink, not file content
            if stage != b"0" or mode == b"160000":
                continue
            blobs[path.decode()] = obj.decode()
        logger.debug(f"Found {len(blobs)} tracked blobs")
        return blobs

    def get_changed_files(self, include_untracked: bool = True) -> list[str]:
        """List files whose working-tree bytes differ from the index blob.

        Uses ``git ls-files --modified`` rather than ``git status`` because
        its paths are relative to the project root even when that root is a
        subdirectory of the repository. Staged edits are already reflected in
        the index blob ids, so only unstaged edits count. Deleted files are
        skipped since they have nothing to hash.

        Returns:
            Relative POSIX paths of changed files that exist on disk
        """
        output = self._run(["ls-files", "--modified", "-z"], timeout=60)
        changed: list[str] = []
        for raw in output.split(b"\0"):
            if not raw:
                continue
            filename = raw.decode()
            if (self.project_root / filename).is_file():
                changed.append(filename)
            else:
                logger.debug(f"Skipping deleted file: {filename}")

        if include_untracked:
            changed.extend(self.list_untracked_files())

        logger.debug(
            f"Found {len(changed)} changed files "
            f"(untracked={'included' if include_untracked else 'excluded'})"
        )
        return changed

    def list_untracked_files(self) -> list[str]:
        """List untracked, non-ignored files as relative POSIX paths."""
        output = self._run(["ls-files", "--others", "--exclude-standard", "-z"])
        return [p.decode() for p in output.split(b"\0") if p]

    def get_current_branch(self) -> str | None:
        """Get name of current branch, or None on a detached HEAD."""
        branch = self._run_text(["rev-parse", "--abbrev-ref", "HEAD"], timeout=5)
        return branch if branch != "HEAD" else None

    def get_head_commit(self) -> str | None:
        return self._run_text(["rev-parse", "HEAD"], timeout=5)

    def get_commit_date(self) -> str | None:
        """ISO-8601 committer date of HEAD."""
        return self._run_text(["show", "-s", "--format=%cI", "HEAD"], timeout=5)

    def get_remote_url(self, remote: str = "origin") -> str | None:
        return self._run_text(["config", "--get", f"remote.{remote}.url"], timeout=5)

    def get_toplevel(self) -> Path:
        top = self._run_text(["rev-parse", "--show-toplevel"], timeout=5)
        return Path(top) if top else self.project_root

    def repository_metadata(self) -> RepositoryMetadata:
        """Collect the metadata recorded on the Repository node."""
        root = self.get_toplevel()
        name = root.name[:-4] if root.name.endswith(".git") else root.name
        remote_url = self.get_remote_url()
        metadata = RepositoryMetadata(
            name=name,
            path=root.as_posix(),
            remote_url=remote_url,
            organization=extract_organization(remote_url),
            branch=self.get_current_branch(),
            commit_hash=self.get_head_commit(),
            commit_date=self.get_commit_date(),
        )
        logger.debug(
            f"Repository metadata: repo={metadata.name}, "
            f"org={metadata.organization}, branch={metadata.branch}"
        )
        return metadata
