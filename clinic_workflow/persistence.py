"""
Session-scoped artifact persistence.

One JSON file per (session, key), grouped in one directory per session,
with an in-memory overlay in front of the files.
"""

import copy
import json
import logging
import os
import shutil
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Set

from clinic_workflow.artifacts import ArtifactKey, to_artifact_key
from clinic_workflow.errors import StorageFailure

logger = logging.getLogger(__name__)

SESSION_DIR_PREFIX = "SESSION-"

_MISSING = object()


def _validate_session_id(session_id: str) -> str:
    """Reject ids that could escape the data directory"""
    if not isinstance(session_id, str) or not session_id.strip():
        raise ValueError("session_id must be a non-empty string")
    if "/" in session_id or "\\" in session_id or session_id in (".", ".."):
        raise ValueError(f"Invalid session_id: {session_id!r}")
    return session_id


class ArtifactCache:
    """
    Process-local overlay keyed by (session_id, key).

    Invalidation rule:
    - Written through on every store (before the durable write)
    - Filled lazily on a get miss that hits the durable medium
    - Dropped per session on delete
    - Dropped per key when the store finds its record file gone

    Values are deep copied in and out so callers can never mutate
    cached state behind the store's back.
    """

    def __init__(self):
        self._entries: Dict[tuple, Any] = {}
        self._lock = threading.Lock()

    def lookup(self, session_id: str, key: ArtifactKey) -> Any:
        """Return cached value, or the module sentinel _MISSING"""
        with self._lock:
            value = self._entries.get((session_id, key), _MISSING)
        if value is _MISSING:
            return _MISSING
        return copy.deepcopy(value)

    def put(self, session_id: str, key: ArtifactKey, value: Any) -> Any:
        """Set entry and return the previous one (or _MISSING)"""
        with self._lock:
            previous = self._entries.get((session_id, key), _MISSING)
            self._entries[(session_id, key)] = copy.deepcopy(value)
        return previous

    def restore(self, session_id: str, key: ArtifactKey, previous: Any) -> None:
        """Undo a put using the value it returned"""
        with self._lock:
            if previous is _MISSING:
                self._entries.pop((session_id, key), None)
            else:
                self._entries[(session_id, key)] = previous

    def discard(self, session_id: str, key: ArtifactKey) -> None:
        with self._lock:
            self._entries.pop((session_id, key), None)

    def drop_session(self, session_id: str) -> int:
        with self._lock:
            doomed = [k for k in self._entries if k[0] == session_id]
            for k in doomed:
                del self._entries[k]
        return len(doomed)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class ArtifactStore:
    """
    Durable key/value persistence per session.

    Layout:
        outputs/sessions/SESSION-<id>/
            transcript_raw.json
            transcript_clean.json
            soap_data.json
            ...

    Each file holds {session_id, key, value, stored_at}.

    Design:
    - Overwrite on same key (never versioned)
    - Atomic file replace, so a failed write leaves the previous record
    - Reads never raise: failures are logged and reported as absent
    - Writes raise StorageFailure
    - The files are authoritative; the overlay is only a cache
    """

    def __init__(self, base_dir: str = "outputs/sessions",
                 cache: Optional[ArtifactCache] = None):
        """
        Initialize artifact store.

        Args:
            base_dir: Directory holding one sub-directory per session
            cache: Overlay to use (a private one is created if omitted)
        """
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.cache = cache if cache is not None else ArtifactCache()
        logger.info(f"ArtifactStore initialized: {self.base_dir}")

    def _session_dir(self, session_id: str) -> Path:
        return self.base_dir / f"{SESSION_DIR_PREFIX}{_validate_session_id(session_id)}"

    def store(self, session_id: str, key, value: Any) -> None:
        """
        Store artifact, overwriting any previous value for the key.

        The overlay is updated first; if the durable write then fails,
        the overlay entry is restored so the session keeps its last
        durable state.

        Args:
            session_id: Session identifier
            key: ArtifactKey (or its string value)
            value: JSON-serializable payload

        Raises:
            ValueError: Unknown key or invalid session_id
            StorageFailure: Durable write failed
        """
        key = to_artifact_key(key)
        session_dir = self._session_dir(session_id)

        previous = self.cache.put(session_id, key, value)

        record = {
            "session_id": session_id,
            "key": key.value,
            "value": value,
            "stored_at": datetime.now(timezone.utc).isoformat(),
        }

        # Unique temp name per writer; concurrent writers race on os.replace
        # and the last one to complete wins
        tmp_path = session_dir / f".{key.value}.{uuid.uuid4().hex}.tmp"
        try:
            payload = json.dumps(record, indent=2, ensure_ascii=False)
            session_dir.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp_path, session_dir / f"{key.value}.json")
        except (OSError, TypeError, ValueError) as e:
            self.cache.restore(session_id, key, previous)
            try:
                tmp_path.unlink()
            except OSError:
                pass
            logger.error(f"Error storing {key.value} for session {session_id}: {e}")
            raise StorageFailure(
                f"Failed to store {key.value}: {e}", session_id=session_id
            ) from e

        logger.info(f"Stored {key.value} for session {session_id}")

    def get(self, session_id: str, key) -> Any:
        """
        Retrieve artifact value.

        Checks the overlay first, then the session directory (filling
        the overlay on a hit). An overlay entry whose record file is gone
        (deleted or swept by another process) is dropped and reported
        as absent.

        Returns:
            Stored value, or None if absent or unreadable
        """
        key = to_artifact_key(key)
        file_path = self._session_dir(session_id) / f"{key.value}.json"

        cached = self.cache.lookup(session_id, key)
        if cached is not _MISSING:
            if file_path.exists():
                return cached
            self.cache.discard(session_id, key)
            logger.warning(f"Dropped cached {key.value} for session {session_id}: record removed")
            return None

        try:
            with open(file_path, "r", encoding="utf-8") as f:
                record = json.load(f)
            value = record["value"]
        except FileNotFoundError:
            return None
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.error(f"Error retrieving {key.value} for session {session_id}: {e}")
            return None

        self.cache.put(session_id, key, value)
        return copy.deepcopy(value)

    def get_session_data(self, session_id: str) -> Dict[str, Any]:
        """
        Read every durable artifact for a session.

        Does not consult the overlay. Unreadable records are logged
        and skipped.

        Returns:
            dict: key string -> value (empty if session doesn't exist)
        """
        session_dir = self._session_dir(session_id)
        if not session_dir.is_dir():
            return {}

        session_data = {}
        try:
            files = sorted(session_dir.glob("*.json"))
        except OSError as e:
            logger.error(f"Error listing session data for {session_id}: {e}")
            return {}

        for file_path in files:
            try:
                key = to_artifact_key(file_path.stem)
            except ValueError:
                logger.warning(f"Ignoring unknown artifact file: {file_path.name}")
                continue

            try:
                with open(file_path, "r", encoding="utf-8") as f:
                    record = json.load(f)
                session_data[key.value] = record["value"]
            except (OSError, ValueError, KeyError, TypeError) as e:
                logger.error(f"Error reading {file_path.name} for session {session_id}: {e}")

        return session_data

    def delete(self, session_id: str, key) -> None:
        """
        Remove one artifact. Idempotent.

        Raises:
            StorageFailure: Record file could not be removed
        """
        key = to_artifact_key(key)
        file_path = self._session_dir(session_id) / f"{key.value}.json"
        self.cache.discard(session_id, key)

        try:
            file_path.unlink()
        except FileNotFoundError:
            return
        except OSError as e:
            logger.error(f"Error deleting {key.value} for session {session_id}: {e}")
            raise StorageFailure(
                f"Failed to delete {key.value}: {e}", session_id=session_id
            ) from e

        logger.info(f"Deleted {key.value} for session {session_id}")

    def delete_session(self, session_id: str) -> None:
        """
        Remove every overlay entry and durable record for a session.

        Idempotent: deleting an absent session is a no-op.

        Raises:
            StorageFailure: Session directory could not be removed
        """
        session_dir = self._session_dir(session_id)
        dropped = self.cache.drop_session(session_id)

        if session_dir.exists():
            try:
                shutil.rmtree(session_dir)
            except OSError as e:
                logger.error(f"Error deleting session {session_id}: {e}")
                raise StorageFailure(
                    f"Failed to delete session: {e}", session_id=session_id
                ) from e

        logger.info(f"Deleted session {session_id} ({dropped} cached entries)")

    def list_sessions(self) -> Set[str]:
        """
        List every session directory.

        Includes directories left holding only temp files by an
        interrupted write, so the sweeper can still remove them.

        Returns:
            set: Session identifiers (empty on listing failure)
        """
        try:
            entries = list(self.base_dir.iterdir())
        except OSError as e:
            logger.error(f"Error listing sessions: {e}")
            return set()

        sessions = set()
        for entry in entries:
            if entry.is_dir() and entry.name.startswith(SESSION_DIR_PREFIX):
                sessions.add(entry.name[len(SESSION_DIR_PREFIX):])
        return sessions

    def last_modified(self, session_id: str) -> Optional[datetime]:
        """
        Approximate last write time of a session (directory mtime).

        Every store renames a file into the directory, which bumps
        its mtime.

        Returns:
            datetime (UTC) or None if the session doesn't exist
        """
        try:
            mtime = self._session_dir(session_id).stat().st_mtime
        except FileNotFoundError:
            return None
        return datetime.fromtimestamp(mtime, tz=timezone.utc)

    def session_exists(self, session_id: str) -> bool:
        session_dir = self._session_dir(session_id)
        return session_dir.is_dir() and any(session_dir.glob("*.json"))
