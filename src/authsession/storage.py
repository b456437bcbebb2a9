"""Durable persistence of the credential pair."""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Protocol

from authsession.exceptions import StorageUnavailable
from authsession.types import CredentialPair

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    """A string key-value medium that survives process restarts."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


class MemoryKeyValueStore:
    """Process-local store. Useful for tests and short-lived scripts."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def __contains__(self, key: object) -> bool:
        return key in self._data


class FileKeyValueStore:
    """Keeps all keys in one JSON object on disk.

    Every write rewrites the file through a temporary sibling and
    ``os.replace``, so a crash mid-write leaves the previous contents intact.
    Failures of the medium surface as :class:`StorageUnavailable`.
    """

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read(self) -> dict[str, str]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as exc:
            raise StorageUnavailable(f"cannot read {self.path}: {exc}") from exc
        if not raw.strip():
            return {}
        try:
            data = json.loads(raw)
        except ValueError as exc:
            raise StorageUnavailable(f"corrupt store file {self.path}: {exc}") from exc
        if not isinstance(data, dict):
            raise StorageUnavailable(f"corrupt store file {self.path}: not a JSON object")
        return {str(k): str(v) for k, v in data.items()}

    def _write(self, data: dict[str, str]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    json.dump(data, fh)
                os.replace(tmp, self.path)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise StorageUnavailable(f"cannot write {self.path}: {exc}") from exc

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = self._read()
            data[key] = value
            self._write(data)

    def remove(self, key: str) -> None:
        with self._lock:
            data = self._read()
            if key in data:
                del data[key]
                self._write(data)


class CredentialStore:
    """Best-effort persistence of a :class:`CredentialPair` in a key-value medium.

    The pair lives under two fixed, versioned keys. A session only exists when
    both keys hold non-empty values; anything else loads as ``None``. Errors
    from the medium are logged and swallowed, so an unusable store degrades
    the session to in-memory operation.
    """

    def __init__(self, store: KeyValueStore, *, prefix: str = "AUTHSESSION") -> None:
        self.store = store
        self.access_key = f"{prefix}_AUTH_TOKEN_V1"
        self.refresh_key = f"{prefix}_REFRESH_TOKEN_V1"

    def load(self) -> CredentialPair | None:
        try:
            access_token = self.store.get(self.access_key)
            refresh_token = self.store.get(self.refresh_key)
        except Exception as exc:
            logger.warning("credential store read failed (non-fatal): %s", exc)
            return None
        if not access_token or not refresh_token:
            return None
        return CredentialPair(access_token=access_token, refresh_token=refresh_token)

    def save(self, pair: CredentialPair | None) -> None:
        if pair is None or not pair.access_token or not pair.refresh_token:
            self.clear()
            return
        try:
            self.store.set(self.access_key, pair.access_token)
            self.store.set(self.refresh_key, pair.refresh_token)
        except Exception as exc:
            logger.warning("credential store write failed (non-fatal): %s", exc)
            # A half-written pair must not load as a session on the next start.
            self.clear()

    def clear(self) -> None:
        for key in (self.access_key, self.refresh_key):
            try:
                self.store.remove(key)
            except Exception as exc:
                logger.warning("credential store clear of %s failed (non-fatal): %s", key, exc)
