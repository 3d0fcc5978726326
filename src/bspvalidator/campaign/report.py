"""Rich console summary of a finished campaign.

One row per sample, followed by a footer with the campaign totals:

    Sample      Passed  Failed  Skipped  Failing devices
    LEDBlink         7       1        0  STM32F405RG
    USB_CDC          5       0        3

      12 passed, 1 failed, 3 skipped
"""

from rich.console import Console, Group
from rich.table import Table
from rich.text import Text

from .results import CampaignStatistics, SampleStatistics


def _format_sample(sample: SampleStatistics) -> Text:
    if sample.failed_devices:
        return Text(sample.name, style="red")
    if sample.succeeded == 0:
        return Text(sample.name, style="dim")
    return Text(sample.name, style="green")


def render_table(stats: CampaignStatistics) -> Table:
    """Build the per-sample summary table.

    Returns:
        A Rich Table with one row per sample.
    """
    table = Table(show_edge=False, box=None, padding=(0, 1), expand=False)
    table.add_column("Sample", style="bold", no_wrap=True, min_width=16)
    table.add_column("Passed", justify="right")
    table.add_column("Failed", justify="right")
    table.add_column("Skipped", justify="right")
    table.add_column("Failing devices")

    for sample in stats.samples:
        failed = sample.failed_devices
        table.add_row(
            _format_sample(sample),
            str(sample.succeeded),
            Text(str(len(failed)), style="red" if failed else ""),
            str(sample.skipped),
            Text(" ".join(failed), style="red"),
        )
    return table


def render_footer(stats: CampaignStatistics) -> Text:
    """Campaign totals line."""
    parts = [f"{stats.passed} passed", f"{stats.failed} failed"]
    if stats.skipped:
        parts.append(f"{stats.skipped} skipped")
    return Text(f"\n  {', '.join(parts)}", style="bold green" if stats.all_passed else "bold red")


def print_summary(stats: CampaignStatistics, console: Console | None = None) -> None:
    """Print the summary table and totals.

    Args:
        stats: Statistics of the finished (or aborted) campaign
        console: Rich Console instance for rendering. If None, creates a new one.
    """
    console = console if console is not None else Console()
    console.print(Group(Text(""), render_table(stats), render_footer(stats)))
