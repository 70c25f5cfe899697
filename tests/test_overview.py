from __future__ import annotations

from rich.console import Console

from portal.models import Chapter, ChapterKind, Series
from portal.ui.overview import CatalogOverview, collect_overview


def _catalog() -> list:
    return [
        Series(
            id="night",
            title="Night Garden",
            icon="🌙",
            chapters=[
                Chapter(id="n1", title="Prologue"),
                Chapter(
                    id="n2",
                    title="Lullaby",
                    kind=ChapterKind.AUDIO,
                    link="https://drive.google.com/file/d/ABC/view",
                    credit_name="Narrator",
                ),
                Chapter(id="n3", title="Echo", kind=ChapterKind.AUDIO, link="https://cdn.example/a.mp3"),
            ],
        ),
        Series(id="empty", title="Empty Shelf"),
    ]


def test_collect_overview_counts_kinds_and_hosted_audio() -> None:
    snapshot = collect_overview(_catalog())

    assert snapshot.series_count == 2
    assert snapshot.chapter_count == 3
    assert snapshot.kind_totals == {ChapterKind.STORY: 1, ChapterKind.AUDIO: 2}
    assert snapshot.hosted_audio_count == 1


def test_overview_renders_series_tree() -> None:
    console = Console(record=True, width=200)

    CatalogOverview(_catalog(), console=console).run()

    output = console.export_text()
    assert "Night Garden" in output
    assert "Lullaby" in output
    assert "by Narrator" in output
    assert "No chapters yet" in output
