from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import pytest

from portal.models import ChapterKind
from portal.services.storage import CatalogRepository


def test_repository_crud_cycle(repository: CatalogRepository) -> None:
    series = repository.create_series("Night Garden", "Short stories", "🌙")
    assert series is not None
    assert series.id == "night-garden"

    chapter = repository.append_chapter(
        series.id,
        "Prologue",
        "https://docs.example/document/d/abc/edit",
        ChapterKind.STORY,
        body="<p>Once upon a time</p>",
        credit_name="Writer",
    )
    assert chapter is not None
    assert chapter.id.startswith("prologue-")

    retrieved = repository.get_series(series.id)
    assert retrieved is not None
    assert [item.title for item in retrieved.chapters] == ["Prologue"]
    assert retrieved.chapters[0].content == "<p>Once upon a time</p>"
    assert retrieved.chapters[0].credit_name == "Writer"

    patched = repository.patch_chapter(series.id, chapter.id, {"title": "Opening", "type": "audiobook"})
    assert patched is not None
    assert patched.title == "Opening"
    assert patched.kind is ChapterKind.AUDIO

    assert repository.remove_chapter(series.id, chapter.id) is True
    assert repository.remove_chapter(series.id, chapter.id) is False

    assert repository.delete_series(series.id) is True
    assert repository.get_series(series.id) is None
    assert repository.list_series() == []


def test_chapter_order_survives_deletions(repository: CatalogRepository) -> None:
    series = repository.create_series("Ordered")
    assert series is not None

    ids = []
    for title in ("One", "Two", "Three", "Four", "Five"):
        chapter = repository.append_chapter(series.id, title, "", ChapterKind.STORY)
        assert chapter is not None
        ids.append(chapter.id)

    repository.remove_chapter(series.id, ids[1])
    repository.remove_chapter(series.id, ids[3])
    repository.append_chapter(series.id, "Six", "", ChapterKind.AUDIO)

    refreshed = repository.get_series(series.id)
    assert refreshed is not None
    assert [item.title for item in refreshed.chapters] == ["One", "Three", "Five", "Six"]


def test_same_title_chapters_get_distinct_ids(repository: CatalogRepository) -> None:
    series = repository.create_series("Echoes")
    assert series is not None

    first = repository.append_chapter(series.id, "Echo", "", ChapterKind.STORY)
    second = repository.append_chapter(series.id, "Echo", "", ChapterKind.STORY)

    assert first is not None and second is not None
    assert first.id != second.id


def test_duplicate_series_title_is_rejected(repository: CatalogRepository) -> None:
    assert repository.create_series("Twin") is not None
    repository.append_chapter("twin", "Kept", "", ChapterKind.STORY)

    assert repository.create_series("Twin!") is None

    existing = repository.get_series("twin")
    assert existing is not None
    assert [item.title for item in existing.chapters] == ["Kept"]


def test_append_chapter_to_missing_series_returns_none(repository: CatalogRepository) -> None:
    assert repository.append_chapter("ghost", "Nothing", "", ChapterKind.STORY) is None
    assert repository.patch_chapter("ghost", "none", {"title": "x"}) is None


def test_patch_chapter_rejects_unknown_fields(repository: CatalogRepository) -> None:
    repository.create_series("Strict")
    chapter = repository.append_chapter("strict", "Only", "", ChapterKind.STORY)
    assert chapter is not None

    with pytest.raises(ValueError):
        repository.patch_chapter("strict", chapter.id, {"position": 4})


def test_list_series_newest_first(repository: CatalogRepository) -> None:
    repository.create_series("Older")
    repository.create_series("Newer")

    assert [item.id for item in repository.list_series()] == ["newer", "older"]


def test_profile_patch_supports_nested_progress_keys(repository: CatalogRepository) -> None:
    assert repository.patch_user_profile("nobody", {"bookmarks": []}) is None

    repository.create_user_profile(
        "reader",
        {"bookmarks": [], "readingHistory": [], "readingProgress": {"a": 20}},
    )
    repository.patch_user_profile("reader", {"readingProgress.b": 60})
    profile = repository.patch_user_profile("reader", {"bookmarks": ["night-garden"]})

    assert profile is not None
    assert profile.reading_progress == {"a": 20, "b": 60}
    assert profile.bookmarks == ["night-garden"]

    with pytest.raises(ValueError):
        repository.patch_user_profile("reader", {"unknownField": 1})


def test_repository_reports_queries_to_event_emitter(temp_config) -> None:
    events = []

    def recorder(action, *, payload=None, duration_ms=None):
        events.append((action, payload, duration_ms))

    repository = CatalogRepository(temp_config, event_emitter=recorder)
    repository.create_series("Traced")

    actions = [action for action, _, _ in events]
    assert {"create_series", "series.insert", "pragma_foreign_keys"} <= set(actions)
    assert all(payload["status"] == "ok" for _, payload, _ in events)
    assert all(duration is not None and duration >= 0 for _, _, duration in events)


def test_profile_patches_from_separate_repositories_do_not_clobber(temp_config) -> None:
    first = CatalogRepository(temp_config)
    second = CatalogRepository(temp_config)
    first.create_user_profile("reader", {"readingProgress": {}})

    def patch(index: int) -> None:
        repository = first if index % 2 else second
        repository.patch_user_profile("reader", {f"readingProgress.ch{index}": 10})

    with ThreadPoolExecutor(max_workers=8) as executor:
        list(executor.map(patch, range(30)))

    profile = first.get_user_profile("reader")
    assert profile is not None
    assert len(profile.reading_progress) == 30
