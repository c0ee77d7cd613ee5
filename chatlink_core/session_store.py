"""Persisted session data for the messaging account."""

from __future__ import annotations

import asyncio
import logging
import shutil
from pathlib import Path

from .errors import SessionStoreError

_LOGGER = logging.getLogger(__name__)


class SessionStore:
    """Directory-backed credential store keyed by a fixed client identity.

    The sidecar writes its auth material below ``session_dir``; the gateway
    only creates the directory tree and erases it wholesale.
    """

    def __init__(self, data_dir: Path, client_id: str) -> None:
        self.data_dir = Path(data_dir)
        self.client_id = client_id

    @property
    def session_dir(self) -> Path:
        return self.data_dir / f"session-{self.client_id}"

    def exists(self) -> bool:
        return self.session_dir.exists()

    async def ensure(self) -> None:
        """Create the session directory if missing."""
        try:
            await asyncio.to_thread(self.session_dir.mkdir, parents=True, exist_ok=True)
        except OSError as err:
            raise SessionStoreError(f"Cannot create {self.session_dir}") from err

    async def erase(self) -> None:
        """Remove all persisted session data for this client.

        Raises:
            SessionStoreError: If the directory exists but cannot be removed.
        """
        if not self.exists():
            _LOGGER.debug("[%s] No session data to erase", self.client_id)
            return

        _LOGGER.info("[%s] Erasing session data in %s", self.client_id, self.session_dir)
        try:
            await asyncio.to_thread(shutil.rmtree, self.session_dir)
        except OSError as err:
            raise SessionStoreError(f"Failed to erase {self.session_dir}") from err
