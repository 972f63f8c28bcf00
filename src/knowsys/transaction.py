"""Best-effort multi-file transaction tracking.

Records the files and directories a scaffold or migration creates so they can
be removed again if a later step fails. This is cleanup, not a durable log:
a process that dies before ``rollback()`` runs leaves its files behind.
"""

from __future__ import annotations

import logging
from pathlib import Path
from types import TracebackType

logger = logging.getLogger(__name__)


class FileTransaction:
    """Track created paths; on failure remove them newest-first.

    Usage::

        with FileTransaction() as tx:
            path.write_text(...)
            tx.track(path)

    Leaving the block normally commits. An exception inside the block rolls
    back every tracked path and propagates.
    """

    def __init__(self) -> None:
        self._paths: list[Path] = []
        self._active = True

    @property
    def tracked(self) -> list[Path]:
        return list(self._paths)

    def track(self, path: Path | str) -> Path:
        if not self._active:
            raise RuntimeError("transaction is already closed")
        p = Path(path)
        self._paths.append(p)
        return p

    def commit(self) -> None:
        """Forget tracked paths; they now belong to the caller."""
        logger.debug("Committed transaction (%d paths)", len(self._paths))
        self._paths.clear()
        self._active = False

    def rollback(self, error: BaseException | None = None) -> None:
        """Remove every still-existing tracked path in reverse order.

        Directories are only removed when empty. Deletion failures are logged
        and do not stop the remaining paths from being processed. If `error`
        is given it is re-raised afterwards.
        """
        paths, self._paths = self._paths, []
        self._active = False
        if paths:
            logger.warning("Rolling back %d tracked paths", len(paths))
        for p in reversed(paths):
            try:
                if p.is_dir() and not p.is_symlink():
                    if any(p.iterdir()):
                        logger.info("Kept directory (not empty): %s", p)
                        continue
                    p.rmdir()
                    logger.info("Removed directory: %s", p)
                elif p.exists() or p.is_symlink():
                    p.unlink()
                    logger.info("Removed file: %s", p)
            except OSError as e:
                logger.error("Could not remove %s during rollback: %s", p, e)
        if error is not None:
            raise error

    def __enter__(self) -> FileTransaction:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> bool:
        if exc is None:
            self.commit()
        else:
            self.rollback()
        return False
