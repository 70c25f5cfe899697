from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from portal.bootstrap import Bootstrapper
from portal.config import AppConfig
from portal.errors import RemoteUnavailableError
from portal.models import Chapter, ChapterKind, Series, UserProfile
from portal.services.storage import CatalogRepository, SQLiteCatalogGateway


@pytest.fixture()
def temp_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> AppConfig:
    monkeypatch.chdir(tmp_path)

    config = AppConfig.from_mapping(
        {
            "storage_root": "storage",
            "database_file": "storage/portal.db",
        },
        base_path=tmp_path,
    )

    Bootstrapper(config).initialize()
    return config


@pytest.fixture()
def repository(temp_config: AppConfig) -> CatalogRepository:
    return CatalogRepository(temp_config)


@pytest.fixture()
def gateway(repository: CatalogRepository) -> "RecordingGateway":
    return RecordingGateway(SQLiteCatalogGateway(repository))


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


class RecordingGateway:
    """Wrap a gateway, counting calls and failing on demand."""

    def __init__(self, inner: SQLiteCatalogGateway) -> None:
        self._inner = inner
        self.calls: Dict[str, int] = {}
        self.failing: set[str] = set()

    def fail(self, *operations: str) -> None:
        self.failing.update(operations)

    def recover(self) -> None:
        self.failing.clear()

    def _enter(self, operation: str) -> None:
        self.calls[operation] = self.calls.get(operation, 0) + 1
        if operation in self.failing or "*" in self.failing:
            raise RemoteUnavailableError(f"{operation} unavailable")

    async def list_series(self) -> List[Series]:
        self._enter("list_series")
        return await self._inner.list_series()

    async def get_series(self, series_id: str) -> Optional[Series]:
        self._enter("get_series")
        return await self._inner.get_series(series_id)

    async def create_series(self, title: str, description: str, icon: str, image: Optional[str] = None):
        self._enter("create_series")
        return await self._inner.create_series(title, description, icon, image)

    async def delete_series(self, series_id: str) -> bool:
        self._enter("delete_series")
        return await self._inner.delete_series(series_id)

    async def append_chapter(
        self,
        series_id: str,
        title: str,
        link: str,
        kind: ChapterKind,
        body: Optional[str] = None,
        credit_name: Optional[str] = None,
        credit_link: Optional[str] = None,
    ) -> Optional[Chapter]:
        self._enter("append_chapter")
        return await self._inner.append_chapter(
            series_id, title, link, kind, body, credit_name, credit_link
        )

    async def remove_chapter(self, series_id: str, chapter_id: str) -> bool:
        self._enter("remove_chapter")
        return await self._inner.remove_chapter(series_id, chapter_id)

    async def patch_chapter(self, series_id: str, chapter_id: str, fields: Mapping[str, Any]):
        self._enter("patch_chapter")
        return await self._inner.patch_chapter(series_id, chapter_id, fields)

    async def get_user_profile(self, user_id: str) -> Optional[UserProfile]:
        self._enter("get_user_profile")
        return await self._inner.get_user_profile(user_id)

    async def create_user_profile(self, user_id: str, fields: Mapping[str, Any]) -> UserProfile:
        self._enter("create_user_profile")
        return await self._inner.create_user_profile(user_id, fields)

    async def patch_user_profile(self, user_id: str, fields: Mapping[str, Any]):
        self._enter("patch_user_profile")
        return await self._inner.patch_user_profile(user_id, fields)
