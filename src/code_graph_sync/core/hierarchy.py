"""Most-specific-container selection for nested project layouts.

A file under ``/repo/sub/src`` is a candidate member of both the repository
rooted at ``/repo`` and the sub-project rooted at ``/repo/sub``; it belongs to
exactly one, the deepest. Comparison is segment-wise, so ``/repo/subway`` is
not inside ``/repo/sub``.
"""

from collections.abc import Iterable

from loguru import logger

from .exceptions import NoContainerFound
from .models import ContainmentCandidate, normalized_parts


class HierarchyResolver:
    """Pure selection over an explicit candidate list."""

    def select_container(
        self, candidates: Iterable[ContainmentCandidate], child_path: str
    ) -> str:
        """Return the id of the deepest candidate whose path contains the child.

        A candidate qualifies when its path is a proper segment-wise prefix of
        ``child_path``. Ties at equal depth go to the lexicographically
        smallest container id so the choice is stable across runs.

        Raises:
            NoContainerFound: No candidate qualifies
        """
        child = normalized_parts(child_path)
        best: ContainmentCandidate | None = None

        for candidate in candidates:
            parts = candidate.parts
            if len(parts) >= len(child) or child[: len(parts)] != parts:
                continue
            if (
                best is None
                or len(parts) > best.depth
                or (
                    len(parts) == best.depth
                    and candidate.container_id < best.container_id
                )
            ):
                best = candidate

        if best is None:
            raise NoContainerFound(
                f"No container encloses {child_path}", {"child_path": child_path}
            )
        return best.container_id

    def select_or_root(
        self,
        candidates: Iterable[ContainmentCandidate],
        child_path: str,
        root_container_id: str,
    ) -> str:
        """Like ``select_container`` but falls back to a synthetic root."""
        try:
            return self.select_container(candidates, child_path)
        except NoContainerFound:
            logger.warning(
                f"No container for {child_path}, attaching to {root_container_id}"
            )
            return root_container_id
