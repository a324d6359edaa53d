"""
Axis and facet configuration: y-axis scale modes, x-axis limits with label
thinning, and the facet grid of sub-panels.
"""

import logging
import math
from typing import Dict, List, Optional, Sequence, Tuple, Union

from matplotlib.ticker import FixedLocator, MaxNLocator, NullLocator, ScalarFormatter

from .errors import ConfigurationError
from .records import NormalizedRecords

logger = logging.getLogger(__name__)

# scales mode -> (share x, share y)
SCALE_SHARING: Dict[str, Tuple[bool, bool]] = {
    "fixed": (True, True),
    "free_x": (False, True),
    "free_y": (True, False),
    "free": (False, False),
}

STRIP_FACECOLOR = "#D9D9D9"

YLim = Union[None, float, Sequence[float]]


def facet_panels(records: NormalizedRecords, facet_dim: Optional[str]) -> List[Optional[str]]:
    """Panel keys in order of first appearance, or [None] for a single panel."""
    if not facet_dim or facet_dim not in records.table.columns:
        return [None]
    values = records.table[facet_dim].dropna().astype(str)
    panels = list(dict.fromkeys(values))
    return panels or [None]


def create_facet_axes(
    fig,
    region,
    panels: Sequence[Optional[str]],
    ncol: int = 3,
    scales: str = "fixed",
    paper_style: bool = False,
) -> List:
    """
    Create one axes per panel inside region (a SubplotSpec of fig).

    Rows fill left to right; the grid has ceil(len(panels) / ncol) rows. Axis
    sharing follows SCALE_SHARING. Panel titles are drawn as strips with a gray
    background unless paper_style is set.

    Raises:
        ConfigurationError: unknown scales mode or non-positive ncol.
    """
    if scales not in SCALE_SHARING:
        raise ConfigurationError(
            f"scales must be one of {sorted(SCALE_SHARING)}, got {scales!r}"
        )
    if ncol < 1:
        raise ConfigurationError(f"facet column count must be positive, got {ncol}")
    share_x, share_y = SCALE_SHARING[scales]

    n = len(panels)
    ncols = min(ncol, n)
    nrows = math.ceil(n / ncols)
    grid = region.subgridspec(nrows, ncols)

    axes: List = []
    for i, panel in enumerate(panels):
        first = axes[0] if axes else None
        ax = fig.add_subplot(
            grid[i // ncols, i % ncols],
            sharex=first if share_x else None,
            sharey=first if share_y else None,
        )
        if panel is not None:
            strip = None if paper_style else {"facecolor": STRIP_FACECOLOR, "edgecolor": "none"}
            ax.set_title(panel, bbox=strip)
        axes.append(ax)
    logger.debug("Created %d panel(s) in a %dx%d grid (scales=%s)", n, nrows, ncols, scales)
    return axes


def _limit_values(ylim: YLim) -> List[float]:
    if ylim is None:
        return []
    if isinstance(ylim, (int, float)):
        return [float(ylim)]
    return [float(v) for v in ylim]


def apply_y_axis(
    ax,
    ylog: bool = False,
    ybreaks: Optional[Sequence[float]] = None,
    ylim: YLim = 0,
) -> None:
    """
    Configure the y-axis after the data has been drawn.

    Linear mode: the view is expanded so every value in ylim is visible.
    Log mode: base-10 scale, clamped to ylim when it is a positive (low, high) pair.
    In both modes ybreaks fixes the tick positions.
    """
    limits = _limit_values(ylim)
    if ylog:
        ax.set_yscale("log", base=10)
        if len(limits) == 2 and min(limits) > 0:
            ax.set_ylim(min(limits), max(limits))
        elif limits and limits != [0.0]:
            logger.warning("Ignoring y limits %s on a log axis", limits)
    elif limits:
        lo, hi = ax.get_ylim()
        ax.set_ylim(min([lo] + limits), max([hi] + limits))

    if ybreaks is not None:
        ax.yaxis.set_major_locator(FixedLocator(list(ybreaks)))
        ax.yaxis.set_minor_locator(NullLocator())
        ax.yaxis.set_major_formatter(ScalarFormatter())


def apply_x_axis(ax, xlim: Optional[Sequence[float]] = None) -> None:
    """Optional x limits; integer period ticks thinned to avoid overlapping labels."""
    if xlim is not None:
        ax.set_xlim(xlim[0], xlim[1])
    ax.xaxis.set_major_locator(MaxNLocator(nbins="auto", integer=True))
    ax.tick_params(axis="x", labelrotation=90)
