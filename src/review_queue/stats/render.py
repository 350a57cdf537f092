"""Rich rendering helpers for the review queue summary."""

from __future__ import annotations

from rich.console import Console
from rich.table import Table

from ..schemas import DatasetPointer, Summary, WaitEstimate, format_timestamp

TABLE_ROW_STYLES = ["white", "yellow"]


def render_summary(summary: Summary, console: Console) -> None:
    """Render queue totals, wait estimates, weekly merges, and dataset pointers."""
    console.print(f"Checked at: {format_timestamp(summary.checked_at)}")
    if summary.latest_merged_at is not None:
        console.print(f"Latest merge: {format_timestamp(summary.latest_merged_at)}")
    console.print("\n")

    totals_table = Table(title="Ready for Review", title_justify="left")
    totals_table.add_column("Type", justify="left")
    totals_table.add_column("Pull Requests", justify="right")
    totals_table.add_row("Plugins", f"{summary.totals.ready_plugins:,}", style=TABLE_ROW_STYLES[0])
    totals_table.add_row("Themes", f"{summary.totals.ready_themes:,}", style=TABLE_ROW_STYLES[1])
    totals_table.add_row("Total", f"{summary.totals.ready_total:,}", style="bold")
    console.print(totals_table)
    console.print("\n")

    estimates_table = Table(title="Estimated Wait (days)", title_justify="left")
    estimates_table.add_column("Type", justify="left")
    estimates_table.add_column("Estimate", justify="right")
    estimates_table.add_column("Range", justify="right")
    estimates_table.add_column("High Variance", justify="center")
    for index, (label, estimate) in enumerate(
        (("Plugins", summary.wait_estimates.plugin), ("Themes", summary.wait_estimates.theme))
    ):
        style = TABLE_ROW_STYLES[index % len(TABLE_ROW_STYLES)]
        estimates_table.add_row(label, *_estimate_cells(estimate), style=style)
    console.print(estimates_table)
    console.print("\n")

    weekly = summary.weekly_merged
    if not weekly.week_starts:
        console.print("No merges in the weekly window.")
    else:
        weekly_table = Table(title="Merged per Week", show_footer=True, footer_style="bold", title_justify="left")
        weekly_table.add_column("Week Starting", footer="Total", justify="left")
        weekly_table.add_column("Plugins", footer=f"{sum(weekly.plugin_counts):,}", justify="right")
        weekly_table.add_column("Themes", footer=f"{sum(weekly.theme_counts):,}", justify="right")
        for index, (week, plugins, themes) in enumerate(
            zip(weekly.week_starts, weekly.plugin_counts, weekly.theme_counts, strict=True)
        ):
            weekly_table.add_row(
                week.date().isoformat(),
                f"{plugins:,}",
                f"{themes:,}",
                style=TABLE_ROW_STYLES[index % len(TABLE_ROW_STYLES)],
            )
        console.print(weekly_table)
    console.print("\n")

    datasets_table = Table(title="Datasets", title_justify="left")
    datasets_table.add_column("Dataset", justify="left")
    datasets_table.add_column("Version", justify="left")
    datasets_table.add_column("Size (bytes)", justify="right")
    datasets_table.add_column("URL", justify="left")
    for pointer in (summary.datasets.open_queue, summary.datasets.merged_history):
        if pointer is not None:
            datasets_table.add_row(*_pointer_cells(pointer))
    console.print(datasets_table)


def _estimate_cells(estimate: WaitEstimate) -> list[str]:
    if estimate.estimated_days is None:
        return ["n/a", "n/a", "-"]
    return [
        str(estimate.estimated_days),
        f"{estimate.lower}-{estimate.upper}",
        "yes" if estimate.is_high_variance else "no",
    ]


def _pointer_cells(pointer: DatasetPointer) -> list[str]:
    return [pointer.dataset, pointer.version[:12], f"{pointer.size:,}", pointer.url]
