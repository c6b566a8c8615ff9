"""
Persisted history of posted receipt identities.

The file holds ``{"posted": [identity, ...]}``. It is loaded once per run and
rewritten atomically after every newly recorded identity, so a restart never
sees a post that was recorded in memory only.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Optional, Union

from ..utils.logger import get_logger

logger = get_logger()

DEFAULT_HISTORY_FILE = "autopost-history.json"


class PostHistory:
    """Append-only set of identities that have already been posted."""

    def __init__(self, path: Union[str, Path], posted: Optional[list[str]] = None):
        self.path = Path(path)
        self._posted: dict[str, None] = dict.fromkeys(posted or [])

    @classmethod
    def load(cls, path: Union[str, Path] = DEFAULT_HISTORY_FILE) -> "PostHistory":
        """
        Load history from disk.

        A missing, unreadable or malformed file yields an empty history.

        Args:
            path: History file location

        Returns:
            PostHistory bound to ``path``
        """
        path = Path(path)
        if not path.exists():
            logger.info("No post history found, starting empty", extra={"path": str(path)})
            return cls(path)

        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(
                "Post history unreadable, starting empty",
                extra={"path": str(path), "error": str(e), "error_type": type(e).__name__},
            )
            return cls(path)

        posted = data.get("posted") if isinstance(data, dict) else None
        if not isinstance(posted, list):
            logger.warning(
                "Post history has unexpected shape, starting empty",
                extra={"path": str(path)},
            )
            return cls(path)

        identities = [item for item in posted if isinstance(item, str)]
        logger.info(
            "Loaded post history",
            extra={"path": str(path), "posted": len(identities)},
        )
        return cls(path, identities)

    @property
    def posted(self) -> list[str]:
        return list(self._posted)

    def has_posted(self, identity: str) -> bool:
        return identity in self._posted

    def record_posted(self, identity: str) -> None:
        """
        Record an identity and persist immediately.

        Recording an identity that is already present does nothing.
        """
        if identity in self._posted:
            return
        self._posted[identity] = None
        self.save()
        logger.debug("Recorded posted identity", extra={"identity": identity})

    def save(self) -> None:
        """Write the history atomically (temp file, fsync, replace)."""
        directory = self.path.parent
        directory.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(
            dir=directory, prefix=f".{self.path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump({"posted": self.posted}, f, indent=2)
                f.write("\n")
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def __contains__(self, identity: object) -> bool:
        return identity in self._posted

    def __len__(self) -> int:
        return len(self._posted)
