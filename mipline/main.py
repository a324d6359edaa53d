#!/usr/bin/env python3
"""
mipline - comparative line plots of scenario results against historical data.

This module assembles the figure. The pipeline is:
- normalize_records()  -> working table tagged with draw categories
- assign_colors()      -> deterministic color table with manual overrides
- build_layers()       -> ordered draw operations (z-order from plot priority)
- axes/facets          -> scale modes, limits, facet grid
- LegendComposer       -> unified legend blocks or a composite legend row

line_historical() is the single entry point; it returns a LinePlotOutput that
holds the matplotlib figure without showing or saving it.
"""

import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

# Ensure a non-interactive Matplotlib backend is selected before pyplot is imported
# so figure assembly never tries to open a GUI window in headless environments.
import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt
import pandas as pd

from .axes import apply_x_axis, apply_y_axis, create_facet_axes, facet_panels
from .layers import DrawOp, HistoricalMarkerPolicy, build_layers, draw_ops
from .legend import (
    LegendContext,
    LegendResult,
    TextWidth,
    collect_legend_seeds,
    make_legend_composer,
)
from .palette import ColorAssignment, Palette, assign_colors, default_palette
from .records import DEFAULT_PRIORITY, DrawCategory, normalize_records, parse_priority

# Configure logging for debugging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@dataclass
class LinePlotParams:
    """
    Plot controls for line_historical().

    Dimensions:
      - color_dim: column coloring the primary series; only "identifier" is allowed
        together with historical/projected data.
      - linetype_dim: optional column mapped to line styles.
      - facet_dim: column splitting the plot into panels (ignored when absent).

    Axes:
      - ylog: base-10 log y-axis. ylim is then a (low, high) clamp; in linear mode
        every value of ylim is kept inside the view (default 0 keeps zero visible).
      - ybreaks: fixed y tick positions.
      - xlim: (min, max) period limits.
      - scales: facet axis sharing, one of "fixed", "free_x", "free_y", "free".

    Legend:
      - unified_legend: True attaches one legend block per scale to the figure,
        False builds the composite legend row.
      - detailed_projection_legend: one entry (and color) per projected identifier
        instead of gray lines faded per model.
      - plot_priority: categories from top-most to bottom-most.
      - color_dim_manual / color_dim_manual_hist: colors replacing the defaults of
        the primary / historical keys, one per sorted key.
      - text_width: label width measure used to apportion composite legend space.
    """

    color_dim: str = "identifier"
    linetype_dim: Optional[str] = None
    facet_dim: Optional[str] = "region"
    ylab: Optional[str] = None
    xlab: Optional[str] = "Year"
    title: Optional[str] = None
    color_dim_name: Optional[str] = None
    ybreaks: Optional[Sequence[float]] = None
    ylim: Union[None, float, Sequence[float]] = 0
    show_dots: bool = True
    ylog: bool = False
    size: float = 14
    scales: str = "fixed"
    detailed_projection_legend: bool = False
    plot_priority: Sequence[Union[DrawCategory, str]] = DEFAULT_PRIORITY
    unified_legend: bool = True
    paper_style: bool = False
    xlim: Optional[Tuple[float, float]] = None
    facet_ncol: int = 3
    legend_ncol: int = 1
    color_dim_manual: Optional[Sequence[str]] = None
    color_dim_manual_hist: Optional[Sequence[str]] = None
    historical_markers: HistoricalMarkerPolicy = field(default_factory=HistoricalMarkerPolicy)
    figsize: Tuple[float, float] = (10.0, 7.0)
    palette: Palette = default_palette
    text_width: TextWidth = len


@dataclass
class LinePlotOutput:
    figure: Any
    records: pd.DataFrame
    colors: ColorAssignment
    draw_ops: List[DrawOp]
    axes: List[Any]
    legend: LegendResult


def get_default_params() -> LinePlotParams:
    """Policy-level defaults for line_historical()."""
    return LinePlotParams()


def theme_rc(size: float) -> Dict[str, Any]:
    """rcParams for a given base text size (white background, bold titles, black tick labels)."""
    return {
        "figure.facecolor": "white",
        "axes.facecolor": "white",
        "axes.edgecolor": "#333333",
        "axes.grid": True,
        "grid.color": "#EBEBEB",
        "grid.linewidth": 0.6,
        "axes.titlesize": size,
        "axes.labelsize": size,
        "axes.labelweight": "bold",
        "figure.titlesize": size + 4,
        "figure.titleweight": "bold",
        "xtick.labelsize": size,
        "ytick.labelsize": size,
        "xtick.color": "black",
        "ytick.color": "black",
        "legend.fontsize": size - 2,
        "legend.title_fontsize": size,
    }


def _resolve_params(params: Optional[LinePlotParams], overrides: Mapping[str, Any]) -> LinePlotParams:
    base = params if params is not None else get_default_params()
    if not overrides:
        return base
    names = {f.name for f in dataclasses.fields(LinePlotParams)}
    unknown = sorted(set(overrides) - names)
    if unknown:
        raise TypeError(f"Unknown plot parameter(s): {unknown}")
    return dataclasses.replace(base, **overrides)


def _label_axes(fig, axes: Sequence, params: LinePlotParams) -> None:
    if params.title:
        fig.suptitle(params.title)
    for ax in axes:
        if ax.get_subplotspec().is_last_row():
            ax.set_xlabel(params.xlab or "")
        if ax.get_subplotspec().is_first_col():
            ax.set_ylabel(params.ylab or "")


def line_historical(
    x: pd.DataFrame,
    x_hist: Optional[pd.DataFrame] = None,
    hlines: Optional[pd.DataFrame] = None,
    hlines_labels: Optional[Mapping[str, str]] = None,
    params: Optional[LinePlotParams] = None,
    **overrides: Any,
) -> LinePlotOutput:
    """
    Compare model output with historical data and other projections in one line plot.

    Parameters:
      - x: primary results (columns model, scenario, region, period, value, variable;
           identifier optional).
      - x_hist: optional secondary table. Rows with scenario "historical" are drawn as
           observations, all other rows as other models' projections, cut at the last
           period of the primary and historical data.
      - hlines: optional table of horizontal reference values (column value, optionally
           variable and the facet column).
      - hlines_labels: optional mapping variable -> text drawn next to each hline.
      - params: LinePlotParams; keyword overrides replace single fields.

    Returns:
      LinePlotOutput with the figure (never shown or saved here), the working table,
      color table, draw operations, body axes and the legend description.

    Raises:
      ConfigurationError: invalid priority, scales mode, or color_dim with historical data.
      ValidationError: malformed input tables or manual colors of the wrong length.
    """
    p = _resolve_params(params, overrides)
    priority = parse_priority(p.plot_priority)

    records = normalize_records(x, x_hist, color_dim=p.color_dim)
    colors = assign_colors(
        records,
        color_dim=p.color_dim,
        detailed_projection=p.detailed_projection_legend,
        manual_current=p.color_dim_manual,
        manual_historical=p.color_dim_manual_hist,
        palette=p.palette,
    )
    ops = build_layers(
        records,
        colors,
        color_dim=p.color_dim,
        linetype_dim=p.linetype_dim,
        show_dots=p.show_dots,
        detailed_projection=p.detailed_projection_legend,
        priority=priority,
        marker_policy=p.historical_markers,
        hlines=hlines,
        hlines_labels=hlines_labels,
    )
    composer = make_legend_composer(p.unified_legend, p.text_width)
    ctx = LegendContext(
        records=records,
        colors=colors,
        color_dim=p.color_dim,
        color_dim_name=p.color_dim_name or records.default_color_dim_name(),
        linetype_dim=p.linetype_dim,
        show_dots=p.show_dots,
        detailed_projection=p.detailed_projection_legend,
        legend_ncol=p.legend_ncol,
        fontsize=p.size,
        marker_policy=p.historical_markers,
    )

    with plt.rc_context(theme_rc(p.size)):
        fig = plt.figure(figsize=p.figsize)
        try:
            region = composer.reserve(fig)
            panels = facet_panels(records, p.facet_dim)
            axes = create_facet_axes(
                fig, region, panels, ncol=p.facet_ncol, scales=p.scales, paper_style=p.paper_style
            )
            for ax, panel in zip(axes, panels):
                draw_ops(ax, ops, panel=panel, facet_dim=p.facet_dim)
            # limits only after every panel holds its data, shared axes autoscale over all of them
            for ax in axes:
                apply_x_axis(ax, p.xlim)
                apply_y_axis(ax, ylog=p.ylog, ybreaks=p.ybreaks, ylim=p.ylim)
            _label_axes(fig, axes, p)
            ctx.seeds = collect_legend_seeds(axes)
            legend = composer.attach(fig, ctx)
        except Exception:
            plt.close(fig)
            raise

    logger.info(
        "Line plot: %d panel(s), categories %s, %s legend",
        len(axes),
        [c.name for c in DrawCategory if records.has(c)],
        legend.mode,
    )
    return LinePlotOutput(
        figure=fig,
        records=records.table,
        colors=colors,
        draw_ops=ops,
        axes=axes,
        legend=legend,
    )
