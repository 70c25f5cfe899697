import sqlite3
from pathlib import Path

import pytest

import portal.bootstrap as bootstrap_module
from portal.bootstrap import BootstrapError, Bootstrapper
from portal.config import AppConfig


def test_bootstrapper_raises_when_storage_directory_unwritable(
    tmp_path: Path, monkeypatch
) -> None:
    storage_root = tmp_path / "storage"
    config = AppConfig(storage_root=storage_root, database_file=storage_root / "portal.db")

    original_ensure = bootstrap_module._ensure_writable_directory

    def fake_ensure(path: Path) -> bool:
        if path.resolve() == storage_root.resolve():
            return False
        return original_ensure(path)

    monkeypatch.setattr(bootstrap_module, "_ensure_writable_directory", fake_ensure)

    with pytest.raises(BootstrapError) as excinfo:
        Bootstrapper(config).initialize()

    assert "storage" in str(excinfo.value).lower()


def test_bootstrapper_creates_schema_idempotently(tmp_path: Path) -> None:
    storage_root = tmp_path / "storage"
    config = AppConfig(storage_root=storage_root, database_file=storage_root / "portal.db")

    Bootstrapper(config).initialize()
    Bootstrapper(config).initialize()

    with sqlite3.connect(config.database_file) as connection:
        tables = {
            row[0]
            for row in connection.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
        }
    assert {"series", "chapters", "user_profiles"} <= tables
