"""A Rich-powered console overview of the catalog."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from rich import box
from rich.columns import Columns
from rich.console import Console, Group
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text
from rich.tree import Tree

from ..models import Chapter, ChapterKind, Series
from ..services.audio import AudioSourceResolver


KIND_LABELS: Dict[ChapterKind, str] = {
    ChapterKind.STORY: "📖 Story",
    ChapterKind.AUDIO: "🎧 Audio",
}


@dataclass
class OverviewSnapshot:
    series: List[Series]
    series_count: int
    chapter_count: int
    kind_totals: Dict[ChapterKind, int]
    hosted_audio_count: int


def collect_overview(
    catalog: Iterable[Series], *, resolver: Optional[AudioSourceResolver] = None
) -> OverviewSnapshot:
    """Aggregate the catalog into a snapshot for terminal rendering."""

    resolver = resolver or AudioSourceResolver()
    series = list(catalog)
    kind_totals = {kind: 0 for kind in KIND_LABELS}
    chapter_count = 0
    hosted_audio_count = 0
    for item in series:
        for chapter in item.chapters:
            chapter_count += 1
            kind_totals[chapter.kind] += 1
            if chapter.kind is ChapterKind.AUDIO and resolver.resolve(chapter.link).is_third_party_host:
                hosted_audio_count += 1

    return OverviewSnapshot(
        series=series,
        series_count=len(series),
        chapter_count=chapter_count,
        kind_totals=kind_totals,
        hosted_audio_count=hosted_audio_count,
    )


class CatalogOverview:
    """Render the catalog as a tree with a summary panel."""

    def __init__(self, catalog: Iterable[Series], *, console: Optional[Console] = None) -> None:
        self._catalog = list(catalog)
        self._console = console or Console()

    def run(self) -> None:
        snapshot = collect_overview(self._catalog)
        console = self._console

        console.rule("[bold magenta]Reading Portal Overview")

        if snapshot.chapter_count == 0 and snapshot.series_count <= 1:
            console.print(
                Panel(
                    "No chapters have been published yet.\n"
                    "Use the admin API to add your first series and chapters.",
                    border_style="yellow",
                    box=box.ROUNDED,
                )
            )

        tree_panel = Panel(
            self._build_tree(snapshot.series),
            title="Catalog",
            border_style="cyan",
            box=box.ROUNDED,
        )
        console.print(Columns([tree_panel, self._build_stats_panel(snapshot)], expand=True, equal=True))

    def _build_tree(self, series: Iterable[Series]) -> Tree:
        tree = Tree("[bold cyan]Series", guide_style="cyan")
        for item in series:
            node = tree.add(self._build_series_label(item))
            if not item.chapters:
                node.add("[dim]No chapters yet")
                continue
            for position, chapter in enumerate(item.chapters, start=1):
                node.add(self._build_chapter_label(position, chapter))
        return tree

    @staticmethod
    def _build_series_label(series: Series) -> Text:
        label = Text(f"{series.icon} {series.title}".strip(), style="bold")
        label.append(f"  ({series.id})", style="dim")
        if series.description:
            label.append("\n")
            label.append(series.description, style="dim")
        return label

    @staticmethod
    def _build_chapter_label(position: int, chapter: Chapter) -> Text:
        label = Text(f"{position}. {chapter.title}", style="white")
        label.append("  ")
        label.append(KIND_LABELS[chapter.kind], style="green")
        if chapter.credit_name:
            label.append(f"  by {chapter.credit_name}", style="dim")
        return label

    def _build_stats_panel(self, snapshot: OverviewSnapshot) -> Panel:
        metrics = Table.grid(expand=True, padding=(0, 1))
        metrics.add_column(style="dim")
        metrics.add_column(justify="right", style="bold")
        metrics.add_row("Series", str(snapshot.series_count))
        metrics.add_row("Chapters", str(snapshot.chapter_count))

        kinds = Table.grid(expand=True, padding=(0, 1))
        kinds.add_column(style="dim")
        kinds.add_column(justify="right", style="bold")
        for kind, label in KIND_LABELS.items():
            kinds.add_row(label, str(snapshot.kind_totals.get(kind, 0)))
        kinds.add_row("Hosted audio", str(snapshot.hosted_audio_count))

        body = Group(metrics, Rule(style="magenta"), kinds)
        return Panel(body, title="At a glance", border_style="magenta", box=box.ROUNDED)


__all__ = ["CatalogOverview", "KIND_LABELS", "OverviewSnapshot", "collect_overview"]
