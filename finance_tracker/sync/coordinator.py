"""Sync coordinator - decides where each dataset's authoritative bytes live."""
import asyncio
import copy
import logging
import time
from collections import defaultdict
from typing import Any, Dict, List, Optional

from finance_tracker.config import DATASETS
from finance_tracker.core.exceptions import AuthFailure, LocalWriteFailure
from finance_tracker.core.models import Dataset
from finance_tracker.db.local_cache import LocalCache
from finance_tracker.db.remote_store import RemoteStore

logger = logging.getLogger(__name__)

LOCAL_USER_ID_KEY = "local_user_id"
REMOTE_SESSION_KEY = "remote_refresh_token"


class SyncCoordinator:
    """Offline-first persistence over a LocalCache and an optional RemoteStore.

    Policy:
        - Local writes always happen, first, in call order.
        - Remote writes are best-effort and only attempted when online and
          authenticated. Their failures are logged, never raised.
        - Loads prefer the remote copy and mirror it locally; any remote
          problem falls back to the local copy.
        - Reconnecting pushes every local dataset to remote (local wins).

    Remote legs for a dataset are serialized by a per-dataset lock, so a slow
    earlier write can never land after a later one.
    """

    def __init__(
        self,
        cache: LocalCache,
        remote: Optional[RemoteStore] = None,
        online: bool = True
    ):
        """Initialize the coordinator.

        Args:
            cache: Local durable cache (owned by the coordinator from now on)
            remote: Remote store, or None to run local-only
            online: Initial connectivity state
        """
        self.cache = cache
        self.remote = remote
        self.is_online = online
        self.user_id: Optional[str] = None
        self.authenticated = False
        self._locks: Dict[str, asyncio.Lock] = {}
        self._generations: Dict[str, int] = defaultdict(int)

    @property
    def remote_ready(self) -> bool:
        return self.remote is not None and self.authenticated and self.is_online

    def _lock(self, name: str) -> asyncio.Lock:
        if name not in self._locks:
            self._locks[name] = asyncio.Lock()
        return self._locks[name]

    def status(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "online": self.is_online,
            "remote_enabled": self.remote is not None,
            "authenticated": self.authenticated,
        }

    # === Identity ===

    def _local_user_id(self) -> str:
        user_id = self.cache.get_meta(LOCAL_USER_ID_KEY)
        if user_id:
            return user_id
        user_id = f"local-{int(time.time() * 1000)}"
        try:
            self.cache.set_meta(LOCAL_USER_ID_KEY, user_id)
        except LocalWriteFailure as e:
            logger.error(f"Could not persist local user id: {e}")
        return user_id

    async def authenticate(self) -> Optional[str]:
        """Establish an anonymous identity with the remote store.

        The session is kept in the local cache's meta table, so later runs
        resume the same identity (and the same remote documents) instead of
        creating a new anonymous user.

        Returns:
            The user id, or None when remote authentication failed. With no
            remote configured a stable device-local id is returned. In both
            of those cases the coordinator keeps working local-only.
        """
        if self.remote is None:
            self.user_id = self._local_user_id()
            logger.info(f"Remote sync disabled, using local identity {self.user_id}")
            return self.user_id

        self.authenticated = False
        try:
            user_id = await self._resume_or_sign_in()
        except AuthFailure as e:
            logger.warning(f"Authentication failed, continuing local-only: {e}")
            return None
        except Exception as e:
            logger.warning(f"Remote unavailable during authentication, continuing local-only: {e}")
            return None

        self.user_id = user_id
        self.authenticated = True
        self._remember_session()
        logger.info(f"Authenticated as {user_id}")
        return user_id

    async def _resume_or_sign_in(self) -> str:
        """Resume the saved remote session; sign up only if there is none or it was rejected."""
        stored = self.cache.get_meta(REMOTE_SESSION_KEY)
        if stored:
            try:
                return await self.remote.restore_session(stored)
            except AuthFailure as e:
                logger.warning(f"Saved remote session rejected, signing in again: {e}")
        return await self.remote.sign_in_anonymously()

    def _remember_session(self) -> None:
        token = self.remote.refresh_token
        if not token or token == self.cache.get_meta(REMOTE_SESSION_KEY):
            return
        try:
            self.cache.set_meta(REMOTE_SESSION_KEY, token)
        except LocalWriteFailure as e:
            logger.error(f"Could not persist remote session: {e}")

    # === Load / save ===

    async def load(self, dataset: Dataset) -> Optional[Any]:
        """Load a dataset, preferring the remote copy.

        Never raises. Returns None when neither copy exists.
        """
        name = Dataset(dataset).value
        if not self.remote_ready:
            return self.cache.get(name)

        async with self._lock(name):
            generation = self._generations[name]
            try:
                value = await self.remote.get_document(self.user_id, name)
            except Exception as e:
                logger.warning(f"Remote load of '{name}' failed, using local copy: {e}")
                return self.cache.get(name)

            if value is None:
                logger.debug(f"No remote document for '{name}', using local copy")
                return self.cache.get(name)

            if self._generations[name] != generation:
                # A save landed locally while we were fetching; it is newer.
                logger.debug(f"Discarding stale remote '{name}', local copy changed meanwhile")
                return self.cache.get(name)

            try:
                self.cache.set(name, value)
            except LocalWriteFailure as e:
                logger.error(f"Could not mirror remote '{name}' locally: {e}")
            return value

    async def save(self, dataset: Dataset, value: Any) -> bool:
        """Persist a dataset locally, then remotely if possible.

        Returns:
            True if the local write succeeded, regardless of the remote outcome
        """
        name = Dataset(dataset).value
        try:
            self.cache.set(name, value)
        except LocalWriteFailure as e:
            logger.error(str(e))
            return False
        self._generations[name] += 1

        if self.remote_ready:
            await self._push(name, copy.deepcopy(value))
        return True

    async def _push(self, name: str, value: Any) -> bool:
        async with self._lock(name):
            if not self.remote_ready:
                return False
            try:
                await self.remote.set_document(self.user_id, name, value)
            except Exception as e:
                logger.warning(f"Remote save of '{name}' failed, kept locally: {e}")
                return False
        return True

    async def resync(self) -> List[str]:
        """Push every locally stored dataset to remote, overwriting it.

        Returns:
            Names of the datasets pushed successfully
        """
        if not self.remote_ready:
            logger.debug("Resync skipped: remote not reachable")
            return []

        pushed = []
        for name in DATASETS:
            value = self.cache.get(name)
            if value is None:
                continue
            if await self._push(name, value):
                pushed.append(name)

        logger.info(f"Synchronized {len(pushed)}/{len(DATASETS)} datasets with remote")
        return pushed

    # === Connectivity signals ===

    async def handle_online(self) -> List[str]:
        """Connectivity restored. Resyncs once per offline-to-online transition."""
        if self.is_online:
            return []
        self.is_online = True
        logger.info("Back online")

        if self.remote is not None and not self.authenticated:
            await self.authenticate()
        return await self.resync()

    def handle_offline(self) -> None:
        if self.is_online:
            logger.info("Went offline, remote sync paused")
        self.is_online = False
