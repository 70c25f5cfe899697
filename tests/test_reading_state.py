from __future__ import annotations

import asyncio
import itertools

import pytest

from portal.errors import RemoteUnavailableError
from portal.models import Chapter, ChapterKind, HistoryEntry, Series, UserProfile
from portal.services.reading_state import (
    HISTORY_LIMIT,
    OptimisticReadingState,
    ReadingStateService,
    adjacent_chapters,
    apply_bookmark_toggle,
    apply_history_entry,
    bookmarked_series,
    continue_reading,
    history_items,
)
from portal.services.results import MutationStatus


def _counter_clock():
    counter = itertools.count()
    return lambda: f"2024-01-01T00:00:{next(counter):05d}"


@pytest.fixture()
def service(gateway) -> ReadingStateService:
    return ReadingStateService(gateway, clock=_counter_clock())


@pytest.fixture()
def profile(service: ReadingStateService) -> UserProfile:
    return asyncio.run(
        service.ensure_profile("reader", display_name="Reader", email="reader@example.com")
    )


def _catalog() -> list:
    return [
        Series(
            id="night",
            title="Night",
            chapters=[
                Chapter(id="n1", title="One"),
                Chapter(id="n2", title="Two", kind=ChapterKind.AUDIO),
                Chapter(id="n3", title="Three"),
            ],
        ),
        Series(id="day", title="Day", chapters=[Chapter(id="d1", title="Dawn")]),
    ]


def test_ensure_profile_creates_then_refreshes_login(service: ReadingStateService, gateway) -> None:
    created = asyncio.run(service.ensure_profile("reader", display_name="Reader"))

    assert created.bookmarks == []
    assert created.reading_history == []
    assert created.reading_progress == {}
    assert created.preferred_theme == "night"
    first_login = created.last_login

    refreshed = asyncio.run(service.ensure_profile("reader", display_name="Someone else"))

    assert refreshed.display_name == "Reader"
    assert refreshed.last_login != first_login
    assert gateway.calls["create_user_profile"] == 1


def test_toggle_bookmark_twice_restores_state(service: ReadingStateService, profile) -> None:
    assert asyncio.run(service.toggle_bookmark("reader", "night")) is True
    stored = asyncio.run(service.get_profile("reader"))
    assert stored.bookmarks == ["night"]

    assert asyncio.run(service.toggle_bookmark("reader", "night")) is False
    stored = asyncio.run(service.get_profile("reader"))
    assert stored.bookmarks == []


def test_missing_profile_is_a_no_op(service: ReadingStateService, gateway) -> None:
    assert asyncio.run(service.toggle_bookmark("ghost", "night")) is False
    assert asyncio.run(service.record_history("ghost", "night", "n1")) is None
    assert asyncio.run(service.update_progress("ghost", "n1", 50)) is None
    assert asyncio.run(service.update_preferred_theme("ghost", "day")) is False
    assert "create_user_profile" not in gateway.calls


def test_history_moves_repeat_visits_to_front(service: ReadingStateService, profile) -> None:
    for chapter_id in ("n1", "n2", "n1"):
        asyncio.run(service.record_history("reader", "night", chapter_id))

    stored = asyncio.run(service.get_profile("reader"))

    assert [entry.chapter_id for entry in stored.reading_history] == ["n1", "n2"]
    assert stored.reading_history[0].timestamp > stored.reading_history[1].timestamp


def test_history_is_capped(service: ReadingStateService, profile) -> None:
    for index in range(HISTORY_LIMIT + 5):
        asyncio.run(service.record_history("reader", "night", f"c{index}"))

    stored = asyncio.run(service.get_profile("reader"))

    assert len(stored.reading_history) == HISTORY_LIMIT
    assert stored.reading_history[0].chapter_id == f"c{HISTORY_LIMIT + 4}"
    assert stored.reading_history[-1].chapter_id == "c5"


@pytest.mark.parametrize(
    ("raw", "stored"),
    [(57, 60), (4, 0), (45, 50), (100, 100), (130, 100), (-20, 0)],
)
def test_progress_is_quantized(service: ReadingStateService, profile, raw, stored) -> None:
    assert asyncio.run(service.update_progress("reader", "n1", raw)) == stored

    refreshed = asyncio.run(service.get_profile("reader"))
    assert refreshed.reading_progress["n1"] == stored


def test_progress_updates_leave_other_chapters_untouched(service: ReadingStateService, profile) -> None:
    asyncio.run(service.update_progress("reader", "n1", 30))
    asyncio.run(service.update_progress("reader", "n2", 71))

    refreshed = asyncio.run(service.get_profile("reader"))

    assert refreshed.reading_progress == {"n1": 30, "n2": 70}


def test_preferred_theme_is_stored(service: ReadingStateService, profile) -> None:
    assert asyncio.run(service.update_preferred_theme("reader", "day")) is True
    assert asyncio.run(service.get_profile("reader")).preferred_theme == "day"


def test_gateway_failure_raises_remote_unavailable(service: ReadingStateService, profile, gateway) -> None:
    gateway.fail("get_user_profile")

    with pytest.raises(RemoteUnavailableError):
        asyncio.run(service.toggle_bookmark("reader", "night"))


def test_optimistic_toggle_applies_and_confirms(service: ReadingStateService, profile) -> None:
    state = OptimisticReadingState(service, profile)

    result = asyncio.run(state.toggle_bookmark("night"))

    assert result.ok and result.value is True
    assert state.is_bookmarked("night")
    assert state.last_result is result


def test_optimistic_toggle_rolls_back_on_failure(service: ReadingStateService, profile, gateway) -> None:
    state = OptimisticReadingState(service, profile)
    gateway.fail("patch_user_profile")

    result = asyncio.run(state.toggle_bookmark("night"))

    assert result.status is MutationStatus.FAILED
    assert not state.is_bookmarked("night")
    gateway.recover()
    assert asyncio.run(service.get_profile("reader")).bookmarks == []


def test_optimistic_toggle_adopts_stored_state(service: ReadingStateService, profile) -> None:
    state = OptimisticReadingState(service, profile)
    # Another device bookmarks the series after the local copy was taken.
    asyncio.run(service.toggle_bookmark("reader", "night"))

    result = asyncio.run(state.toggle_bookmark("night"))

    assert result.value is False
    assert not state.is_bookmarked("night")


def test_optimistic_history_and_progress_roll_back(service: ReadingStateService, profile, gateway) -> None:
    state = OptimisticReadingState(service, profile)
    asyncio.run(state.update_progress("n1", 40))
    gateway.fail("patch_user_profile")

    history = asyncio.run(state.record_history("night", "n2"))
    progress = asyncio.run(state.update_progress("n1", 90))

    assert not history.ok and not progress.ok
    assert state.profile.reading_history == []
    assert state.profile.reading_progress == {"n1": 40}


def test_optimistic_history_success_uses_stored_entries(service: ReadingStateService, profile) -> None:
    state = OptimisticReadingState(service, profile)

    result = asyncio.run(state.record_history("night", "n2"))

    assert result.ok
    assert [entry.chapter_id for entry in state.profile.reading_history] == ["n2"]
    assert state.profile.reading_history[0].timestamp.startswith("2024-01-01")


def test_optimistic_write_without_profile_rolls_back(service: ReadingStateService) -> None:
    state = OptimisticReadingState(service, UserProfile(user_id="ghost"))

    result = asyncio.run(state.update_progress("n1", 50))

    assert result.error == "Profile not found"
    assert state.profile.reading_progress == {}


def test_pure_helpers() -> None:
    assert apply_bookmark_toggle(["a"], "b") == (["a", "b"], True)
    assert apply_bookmark_toggle(["a", "b"], "a") == (["b"], False)

    history = [HistoryEntry("s", "c1", "1"), HistoryEntry("s", "c2", "2")]
    updated = apply_history_entry(history, HistoryEntry("s", "c2", "3"), limit=2)
    assert [entry.chapter_id for entry in updated] == ["c2", "c1"]
    assert updated[0].timestamp == "3"


def test_continue_reading_lists_unfinished_chapters() -> None:
    profile = UserProfile(
        user_id="reader",
        reading_progress={"n1": 100, "n2": 40, "n3": 70, "d1": 0, "gone": 50},
    )

    items = continue_reading(profile, _catalog())

    assert [(item.chapter.id, item.progress) for item in items] == [("n3", 70), ("n2", 40)]
    assert items[0].next_chapter is None
    assert items[1].next_chapter is not None and items[1].next_chapter.id == "n3"


def test_bookmarked_and_history_views_skip_missing_content() -> None:
    profile = UserProfile(
        user_id="reader",
        bookmarks=["day", "removed"],
        reading_history=[
            HistoryEntry("night", "n2", "3"),
            HistoryEntry("night", "deleted", "2"),
            HistoryEntry("removed", "x1", "1"),
        ],
    )
    catalog = _catalog()

    assert [series.id for series in bookmarked_series(profile, catalog)] == ["day"]
    items = history_items(profile, catalog)
    assert [(item.series.id, item.chapter.id) for item in items] == [("night", "n2")]


def test_adjacent_chapters() -> None:
    series = _catalog()[0]

    previous, following = adjacent_chapters(series, "n2")
    assert previous.id == "n1" and following.id == "n3"

    assert adjacent_chapters(series, "n1") == (None, series.chapters[1])
    assert adjacent_chapters(series, "n3", kind=ChapterKind.STORY)[0].id == "n1"
    assert adjacent_chapters(series, "missing") == (None, None)


def test_concurrent_progress_updates_are_all_kept(service: ReadingStateService, profile, repository) -> None:
    async def report_all():
        await asyncio.gather(
            *(service.update_progress("reader", f"ch{index}", 50) for index in range(40))
        )

    asyncio.run(report_all())

    stored = repository.get_user_profile("reader")
    assert len(stored.reading_progress) == 40
    assert set(stored.reading_progress.values()) == {50}
