"""Durable store for the paired management endpoint."""

import json
import logging
import time
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from config import DISCOVERY_DB
from discovery.models import DiscoveryRecord

logger = logging.getLogger(__name__)


class StoreUnavailableError(Exception):
    """Raised when the discovery store cannot be opened."""


class DiscoveryStore:
    """Persists the discovery record as a small JSON document.

    Use :meth:`open` as a context manager; the file handle stays open until
    the store is closed. A read-only store never creates the file.
    """

    def __init__(self, path: Path, handle, readonly: bool = False) -> None:
        self._path = path
        self._handle = handle
        self._readonly = readonly
        self._closed = False

    @classmethod
    def open(cls, path: Path = DISCOVERY_DB, readonly: bool = False) -> "DiscoveryStore":
        try:
            if readonly:
                if not path.exists():
                    return cls(path, None, readonly=True)
                handle = open(path, "r", encoding="utf-8")
            else:
                path.parent.mkdir(parents=True, exist_ok=True)
                handle = open(path, "a+", encoding="utf-8")
        except OSError as e:
            raise StoreUnavailableError(f"Cannot open discovery store {path}: {e}") from e
        return cls(path, handle, readonly=readonly)

    def __enter__(self) -> "DiscoveryStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._handle is not None:
            self._handle.close()
            self._handle = None
        self._closed = True

    def save_discovery(self, endpoint: str) -> DiscoveryRecord:
        """Overwrite the stored endpoint."""
        if self._closed:
            raise StoreUnavailableError("Discovery store is closed")
        if self._readonly:
            raise StoreUnavailableError("Discovery store is read-only")

        record = DiscoveryRecord(endpoint=endpoint, updated_at=time.time())
        self._handle.seek(0)
        self._handle.truncate()
        self._handle.write(json.dumps(record.model_dump(), indent=2))
        self._handle.flush()
        logger.debug(f"Saved discovery endpoint {endpoint} to {self._path}")
        return record

    def load_discovery(self) -> Optional[DiscoveryRecord]:
        if self._closed:
            raise StoreUnavailableError("Discovery store is closed")
        if self._handle is None:
            return None

        self._handle.seek(0)
        raw = self._handle.read()
        if not raw.strip():
            return None

        try:
            return DiscoveryRecord(**json.loads(raw))
        except (json.JSONDecodeError, TypeError, ValidationError) as e:
            logger.error(f"Failed to load discovery record: {e}")
            return None
