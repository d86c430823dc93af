"""Tests for session storage backends."""
import json
from pathlib import Path

import pytest

from devcommunity_client.core.session import SessionStore
from devcommunity_client.core.storage import FileStorage, MemoryStorage, StorageError


class TestMemoryStorage:
    """Tests for the dict-backed storage."""

    def test__update__sets_and_removes_together(self) -> None:
        storage = MemoryStorage({"a": "1", "b": "2"})

        storage.update({"a": None, "c": "3"})

        assert storage.snapshot() == {"b": "2", "c": "3"}

    def test__remove__missing_key_is_noop(self) -> None:
        storage = MemoryStorage()
        storage.remove("missing")
        assert storage.get("missing") is None


class TestFileStorage:
    """Tests for the JSON file storage."""

    def test__get__missing_file_is_empty(self, tmp_path: Path) -> None:
        storage = FileStorage(tmp_path / "session.json")
        assert storage.get("auth_token") is None

    def test__set__persists_json_object(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "session.json"
        storage = FileStorage(path)

        storage.set("auth_token", "abc")
        storage.update({"user_data": '{"id": "u1"}'})

        assert json.loads(path.read_text()) == {"auth_token": "abc", "user_data": '{"id": "u1"}'}
        assert FileStorage(path).get("auth_token") == "abc"

    def test__update__none_removes_key(self, tmp_path: Path) -> None:
        storage = FileStorage(tmp_path / "session.json")
        storage.update({"auth_token": "abc", "user_data": "{}"})

        storage.update({"auth_token": None, "user_data": None})

        assert storage.get("auth_token") is None
        assert json.loads(storage.path.read_text()) == {}

    def test__write__leaves_no_temporary_files(self, tmp_path: Path) -> None:
        storage = FileStorage(tmp_path / "session.json")

        storage.set("auth_token", "abc")
        storage.remove("auth_token")

        assert [p.name for p in tmp_path.iterdir()] == ["session.json"]

    @pytest.mark.parametrize("content", ["{broken", "[1, 2]", '"text"'])
    def test__get__corrupted_file_is_empty(self, tmp_path: Path, content: str) -> None:
        path = tmp_path / "session.json"
        path.write_text(content)

        assert FileStorage(path).get("auth_token") is None

    def test__get__non_string_values_ignored(self, tmp_path: Path) -> None:
        path = tmp_path / "session.json"
        path.write_text(json.dumps({"auth_token": 5, "user_data": "{}"}))

        storage = FileStorage(path)

        assert storage.get("auth_token") is None
        assert storage.get("user_data") == "{}"

    def test__get__unreadable_path_raises_storage_error(self, tmp_path: Path) -> None:
        # A directory where the file should be cannot be read as text
        path = tmp_path / "session.json"
        path.mkdir()

        with pytest.raises(StorageError):
            FileStorage(path).get("auth_token")

    def test__get__undecodable_bytes_is_empty(self, tmp_path: Path) -> None:
        path = tmp_path / "session.json"
        path.write_bytes(b"\xff\xfe\x00garbage")

        assert FileStorage(path).get("auth_token") is None

    def test__session_store__restores_anonymous_from_undecodable_file(
        self, tmp_path: Path,
    ) -> None:
        path = tmp_path / "session.json"
        path.write_bytes(b"\xff\xfe\x00garbage")

        store = SessionStore(FileStorage(path))

        assert store.get_user() is None
        assert store.get_token() is None
