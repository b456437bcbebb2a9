"""Tests for the key-value media and CredentialStore."""

from __future__ import annotations

import logging

import pytest

from authsession.exceptions import StorageUnavailable
from authsession.storage import CredentialStore, FileKeyValueStore, MemoryKeyValueStore
from authsession.types import CredentialPair

ACCESS_KEY = "AUTHSESSION_AUTH_TOKEN_V1"
REFRESH_KEY = "AUTHSESSION_REFRESH_TOKEN_V1"


class BrokenStore:
    """Medium that fails every operation."""

    def get(self, key: str) -> str | None:
        raise StorageUnavailable("medium offline")

    def set(self, key: str, value: str) -> None:
        raise StorageUnavailable("medium offline")

    def remove(self, key: str) -> None:
        raise StorageUnavailable("medium offline")


class FailsOnRefreshKey(MemoryKeyValueStore):
    def set(self, key: str, value: str) -> None:
        if key == REFRESH_KEY:
            raise StorageUnavailable("quota exceeded")
        super().set(key, value)


PAIR = CredentialPair(access_token="a.b.c", refresh_token="r-1")


# ---------------------------------------------------------------------------
# Media
# ---------------------------------------------------------------------------


class TestFileKeyValueStore:
    def test_values_survive_new_instance(self, tmp_path) -> None:
        path = tmp_path / "state" / "session.json"
        FileKeyValueStore(path).set("k", "v")
        assert FileKeyValueStore(path).get("k") == "v"

    def test_remove(self, tmp_path) -> None:
        store = FileKeyValueStore(tmp_path / "s.json")
        store.set("k", "v")
        store.remove("k")
        store.remove("missing")
        assert store.get("k") is None

    def test_missing_file_reads_empty(self, tmp_path) -> None:
        assert FileKeyValueStore(tmp_path / "nope.json").get("k") is None

    def test_corrupt_file_is_unavailable(self, tmp_path) -> None:
        path = tmp_path / "s.json"
        path.write_text("{not json")
        with pytest.raises(StorageUnavailable, match="corrupt"):
            FileKeyValueStore(path).get("k")

    def test_unreadable_path_is_unavailable(self, tmp_path) -> None:
        with pytest.raises(StorageUnavailable):
            FileKeyValueStore(tmp_path).get("k")


# ---------------------------------------------------------------------------
# CredentialStore
# ---------------------------------------------------------------------------


class TestCredentialStore:
    def test_save_then_load(self) -> None:
        medium = MemoryKeyValueStore()
        CredentialStore(medium).save(PAIR)
        assert medium.get(ACCESS_KEY) == "a.b.c"
        assert medium.get(REFRESH_KEY) == "r-1"
        assert CredentialStore(medium).load() == PAIR

    def test_load_empty_is_none(self) -> None:
        assert CredentialStore(MemoryKeyValueStore()).load() is None

    @pytest.mark.parametrize(
        "initial",
        [
            {ACCESS_KEY: "a.b.c"},
            {REFRESH_KEY: "r-1"},
            {ACCESS_KEY: "", REFRESH_KEY: "r-1"},
            {ACCESS_KEY: "a.b.c", REFRESH_KEY: ""},
        ],
    )
    def test_partial_pair_loads_as_none(self, initial: dict[str, str]) -> None:
        assert CredentialStore(MemoryKeyValueStore(initial)).load() is None

    def test_each_field_read_from_its_own_key(self) -> None:
        medium = MemoryKeyValueStore({ACCESS_KEY: "access", REFRESH_KEY: "refresh"})
        pair = CredentialStore(medium).load()
        assert pair is not None
        assert pair.access_token == "access"
        assert pair.refresh_token == "refresh"

    def test_save_none_clears(self) -> None:
        medium = MemoryKeyValueStore({ACCESS_KEY: "a", REFRESH_KEY: "r", "other": "kept"})
        CredentialStore(medium).save(None)
        assert ACCESS_KEY not in medium
        assert REFRESH_KEY not in medium
        assert medium.get("other") == "kept"

    def test_prefix_changes_key_names(self) -> None:
        medium = MemoryKeyValueStore()
        CredentialStore(medium, prefix="MYAPP").save(PAIR)
        assert medium.get("MYAPP_AUTH_TOKEN_V1") == "a.b.c"
        assert CredentialStore(medium).load() is None

    def test_broken_medium_is_swallowed(self, caplog) -> None:
        store = CredentialStore(BrokenStore())
        with caplog.at_level(logging.WARNING, logger="authsession.storage"):
            assert store.load() is None
            store.save(PAIR)
            store.save(None)
        assert "non-fatal" in caplog.text

    def test_half_written_pair_is_cleared(self) -> None:
        medium = FailsOnRefreshKey({REFRESH_KEY: "old-refresh"})
        CredentialStore(medium).save(PAIR)
        assert ACCESS_KEY not in medium
        assert REFRESH_KEY not in medium
        assert CredentialStore(medium).load() is None

    def test_file_medium_round_trip(self, tmp_path) -> None:
        path = tmp_path / "session.json"
        CredentialStore(FileKeyValueStore(path)).save(PAIR)
        assert CredentialStore(FileKeyValueStore(path)).load() == PAIR
