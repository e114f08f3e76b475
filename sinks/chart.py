"""Terminal chart egress module - renders the rolling window as two bar charts"""
import curses
from dataclasses import dataclass
from typing import Sequence

import plotext as plt

from aggregator import WindowEntry

MARGIN = 2
# Below this inner size there is no room for two charts
MIN_WIDTH = 20
MIN_HEIGHT = 6


@dataclass(frozen=True)
class Panel:
    """
    One bar chart.

    Attributes:
        title: Chart title.
        style: Color of the bars ("yellow", "green").
        bars: (label, value) pairs, newest first.
    """
    title: str
    style: str
    bars: tuple[tuple[str, int], ...]


def build_panels(window: Sequence[WindowEntry]) -> tuple[Panel, Panel]:
    """
    Map the aggregator window onto the two chart panels.

    Pure function: the window is only read.
    """
    current = Panel(
        title="Current Watt",
        style="yellow",
        bars=tuple((entry.label, entry.instant_watts) for entry in window)
    )
    average = Panel(
        title="AVG x samples",
        style="green",
        bars=tuple((entry.label, entry.rolling_avg_watts) for entry in window)
    )
    return current, average


def init_styles() -> dict:
    """Set up color pairs; call once after curses is initialized."""
    curses.start_color()
    curses.use_default_colors()
    curses.init_pair(1, curses.COLOR_YELLOW, -1)  # Current Watt
    curses.init_pair(2, curses.COLOR_GREEN, -1)   # AVG
    return {
        "yellow": curses.color_pair(1),
        "green": curses.color_pair(2),
    }


def render_text(panels: Sequence[Panel], width: int, panel_height: int) -> str:
    """
    Build the stacked bar charts as plain text with plotext.

    Each panel gets the full width and panel_height rows. Colors are left
    to curses, so the text carries no escape codes.
    """
    plt.clear_figure()
    plt.subplots(len(panels), 1)

    for row, panel in enumerate(panels, start=1):
        plt.subplot(row, 1)
        plt.plotsize(width, panel_height)
        plt.title(panel.title)
        if panel.bars:
            labels = [label for label, _ in panel.bars]
            values = [value for _, value in panel.bars]
            plt.bar(labels, values, color=panel.style)

    plt.colorless()
    return plt.build()


def draw(screen, panels: Sequence[Panel], styles: dict | None = None) -> None:
    """
    Draw the panels on a curses window, stacked 50%/50% inside the margin.

    styles maps panel styles ("yellow", "green") to curses attributes;
    missing names draw without attributes.
    """
    styles = styles or {}
    screen.erase()
    height, width = screen.getmaxyx()

    inner_h = height - 2 * MARGIN
    inner_w = width - 2 * MARGIN
    if inner_h >= MIN_HEIGHT and inner_w >= MIN_WIDTH and panels:
        panel_height = inner_h // len(panels)
        text = render_text(panels, inner_w, panel_height)

        for i, line in enumerate(text.splitlines()[:inner_h]):
            panel = panels[min(i // panel_height, len(panels) - 1)]
            _put(screen, MARGIN + i, MARGIN, line, styles.get(panel.style, 0), (height, width))

    screen.refresh()


def _put(screen, y: int, x: int, text: str, attr: int, bounds: tuple[int, int]) -> None:
    height, width = bounds
    # The last column is never written: curses fails on the bottom-right cell
    if y < 0 or y >= height or x < 0 or x >= width - 1:
        return
    text = text[:width - 1 - x]
    if text:
        screen.addstr(y, x, text, attr)
