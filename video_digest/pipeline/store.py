"""Directory-backed digest store with atomic saves and change listeners.

WHY: Every pipeline stage persists its result before the next one runs, so
the store is the only shared mutable state in the system. Two stages
(cleaning and audio extraction) run concurrently and both write to the
same record; a plain load/modify/save from each would let one overwrite
the other's field.

HOW: One JSON file per digest under the digests directory. Writes go to a
temp file in the same directory and are moved into place with os.replace,
so a save either fully lands or leaves the old record untouched. update()
performs load → mutate → save under a lock, which serializes concurrent
writers. Listeners are called after each successful write (the payload
cache uses this to invalidate).

RULES:
- Digest ids are hex UUID4 strings; anything else is treated as not found
- load() raises DigestNotFound; get() returns None
- A failed write raises PersistenceFailure and changes nothing on disk
- update() only accepts DigestRecord field names
- Listener exceptions are logged, never propagated
"""

from __future__ import annotations

import dataclasses
import json
import logging
import os
import re
import tempfile
import threading
import time
import uuid
from pathlib import Path
from typing import Callable, List, Optional

from video_digest.core.ir import DigestRecord
from video_digest.errors import DigestNotFound, PersistenceFailure

logger = logging.getLogger(__name__)

_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")

_RECORD_FIELDS = frozenset(f.name for f in dataclasses.fields(DigestRecord))

Listener = Callable[[str], None]


class DigestStore:
    """Thread-safe persistence for DigestRecord."""

    def __init__(self, directory: Path) -> None:
        self._dir = Path(directory)
        self._dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._listeners: List[Listener] = []

    @staticmethod
    def new_id() -> str:
        return uuid.uuid4().hex

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def create(self, record: DigestRecord) -> DigestRecord:
        with self._lock:
            if self._path(record.id).exists():
                raise PersistenceFailure(
                    "digest {} already exists".format(record.id), digest_id=record.id
                )
            self._write(record)
        logger.info("Created digest %s for video %s", record.id, record.video_id)
        return record

    def get(self, digest_id: str) -> Optional[DigestRecord]:
        try:
            return self.load(digest_id)
        except DigestNotFound:
            return None

    def load(self, digest_id: str) -> DigestRecord:
        path = self._path(digest_id)
        with self._lock:
            try:
                raw = path.read_text(encoding="utf-8")
            except FileNotFoundError:
                raise DigestNotFound(
                    "unable to load the video digest", digest_id=digest_id
                ) from None
            except OSError as exc:
                raise PersistenceFailure(
                    "unable to read the video digest: {}".format(exc), digest_id=digest_id
                ) from exc
        try:
            return DigestRecord.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as exc:
            raise PersistenceFailure(
                "stored video digest is corrupt: {}".format(exc), digest_id=digest_id
            ) from exc

    def save(self, record: DigestRecord) -> DigestRecord:
        with self._lock:
            self._write(record)
        return record

    def update(
        self,
        digest_id: str,
        mutate: Optional[Callable[[DigestRecord], None]] = None,
        **changes,
    ) -> DigestRecord:
        """Atomically load, modify and save one record.

        Args:
            digest_id: Record to update.
            mutate: Optional callable applied to the loaded record after
                ``changes``; it may inspect the current state.
            **changes: Field values to set.

        Returns:
            The saved record.
        """
        unknown = set(changes) - _RECORD_FIELDS
        if unknown:
            raise ValueError("Unknown digest fields: {}".format(", ".join(sorted(unknown))))

        with self._lock:
            record = self.load(digest_id)
            for name, value in changes.items():
                setattr(record, name, value)
            if mutate is not None:
                mutate(record)
            self._write(record)
        return record

    def delete(self, digest_id: str) -> bool:
        with self._lock:
            path = self._path(digest_id)
            if not path.exists():
                return False
            path.unlink()
        self._notify(digest_id)
        return True

    def list_ids(self) -> List[str]:
        return sorted(p.stem for p in self._dir.glob("*.json"))

    def _path(self, digest_id: str) -> Path:
        if not digest_id or not _ID_RE.match(digest_id):
            raise DigestNotFound("unable to load the video digest", digest_id=digest_id)
        return self._dir / "{}.json".format(digest_id)

    def _write(self, record: DigestRecord) -> None:
        record.updated_at = time.time()
        path = self._path(record.id)
        tmp_name = None
        try:
            payload = json.dumps(record.to_dict())
            fd, tmp_name = tempfile.mkstemp(dir=str(self._dir), prefix=".tmp-", suffix=".json")
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
            os.replace(tmp_name, path)
            tmp_name = None
        except (OSError, TypeError, ValueError) as exc:
            raise PersistenceFailure(
                "problem saving video digest to the database -- please try again",
                digest_id=record.id,
            ) from exc
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    logger.warning("Failed to remove temp file %s", tmp_name)
        self._notify(record.id)

    def _notify(self, digest_id: str) -> None:
        for listener in self._listeners:
            try:
                listener(digest_id)
            except Exception:
                logger.exception("Store listener failed for digest %s", digest_id)
