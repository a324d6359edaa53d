"""
Layer rendering: turns the normalized working set into an ordered list of draw
operations and executes them on matplotlib axes.

Each DrawCategory has its own encoding rule and layer builder. Categories are
emitted in the reverse of the caller's priority so the first-priority category
is drawn last and ends up on top.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import pandas as pd

from .palette import PROJECTION_GRAY, ColorAssignment, color_source
from .records import DEFAULT_PRIORITY, DrawCategory, NormalizedRecords, distinct

logger = logging.getLogger(__name__)

# Line styles cycled over the values of the linetype dimension.
LINESTYLE_CYCLE = ("-", "--", ":", "-.")

REFERENCE_LINE_COLOR = "black"
HLINE_COLOR = "coral"


@dataclass(frozen=True)
class EncodingRule:
    """Visual encoding of one draw category."""

    line_width: float
    line_alpha: float
    marker: Optional[str]
    marker_size: float
    marker_alpha: float
    legend_title: Optional[str]


ENCODING_RULES: Dict[DrawCategory, EncodingRule] = {
    DrawCategory.CURRENT: EncodingRule(
        line_width=1.5,
        line_alpha=1.0,
        marker="o",
        marker_size=4.0,
        marker_alpha=1.0,
        legend_title=None,  # caller-supplied color dimension name
    ),
    DrawCategory.HISTORICAL: EncodingRule(
        line_width=1.5,
        line_alpha=0.3,
        marker="+",
        marker_size=7.0,
        marker_alpha=0.8,
        legend_title="Historical data",
    ),
    DrawCategory.PROJECTED: EncodingRule(
        line_width=1.2,
        line_alpha=0.7,
        marker=None,
        marker_size=0.0,
        marker_alpha=0.5,
        legend_title="Other projections",
    ),
}


@dataclass(frozen=True)
class HistoricalMarkerPolicy:
    """
    Marker size of the historical "+" pass.

    The layer's position in the draw order counts from 0 (bottom). When it is
    drawn at or after escalate_from_position, i.e. over another category, the
    markers grow to overdrawn_size.
    """

    base_size: float = 7.0
    overdrawn_size: float = 14.0
    escalate_from_position: int = 1

    def size_at(self, position: int) -> float:
        if position >= self.escalate_from_position:
            return self.overdrawn_size
        return self.base_size


@dataclass
class DrawOp:
    """
    One backend draw operation.

    kind is one of "line", "points", "vline", "hline", "text". Line and point ops
    draw one artist per group of group_by; per-group color, alpha and line style
    are looked up from the value of color_by / alpha_by / linestyle_by in the
    first row of the group. Artists of a show_legend op carry the group key as
    label and the category value as gid, so the legend glyphs can be taken from
    them; all other artists are labelled "_nolegend_".
    """

    kind: str
    category: Optional[DrawCategory]
    label: str
    data: pd.DataFrame = field(default_factory=pd.DataFrame)
    group_by: Tuple[str, ...] = ()
    color_by: Optional[str] = None
    colors: Mapping[str, str] = field(default_factory=dict)
    alpha_by: Optional[str] = None
    alphas: Mapping[str, float] = field(default_factory=dict)
    linestyle_by: Optional[str] = None
    linestyles: Mapping[str, str] = field(default_factory=dict)
    style: Dict[str, Any] = field(default_factory=dict)
    show_legend: bool = True
    zorder: float = 0.0


@dataclass
class LayerContext:
    records: NormalizedRecords
    colors: ColorAssignment
    color_dim: str = "identifier"
    linetype_dim: Optional[str] = None
    show_dots: bool = True
    detailed_projection: bool = False
    marker_policy: HistoricalMarkerPolicy = field(default_factory=HistoricalMarkerPolicy)

    def linestyles(self) -> Dict[str, str]:
        return linestyle_map(self.records, self.linetype_dim)


def linestyle_map(
    records: NormalizedRecords, linetype_dim: Optional[str]
) -> Dict[str, str]:
    """Line style per value of the linetype dimension over CURRENT rows."""
    if not linetype_dim:
        return {}
    current = records.category(DrawCategory.CURRENT)
    if linetype_dim not in current.columns:
        return {}
    values = distinct(current[linetype_dim].dropna())
    return {v: LINESTYLE_CYCLE[i % len(LINESTYLE_CYCLE)] for i, v in enumerate(values)}


def draw_order(priority: Sequence[DrawCategory] = DEFAULT_PRIORITY) -> Tuple[DrawCategory, ...]:
    """Categories bottom to top: the reverse of the render priority."""
    return tuple(reversed(tuple(priority)))


def _linetype_col(ctx: LayerContext, data: pd.DataFrame) -> Optional[str]:
    if ctx.linetype_dim and ctx.linetype_dim in data.columns:
        return ctx.linetype_dim
    return None


def _current_layer(ctx: LayerContext, position: int) -> List[DrawOp]:
    rule = ENCODING_RULES[DrawCategory.CURRENT]
    data = ctx.records.category(DrawCategory.CURRENT)
    lt = _linetype_col(ctx, data)
    group_by = (ctx.color_dim,) + ((lt,) if lt else ())
    ops = [
        DrawOp(
            kind="line",
            category=DrawCategory.CURRENT,
            label="current lines",
            data=data,
            group_by=group_by,
            color_by=ctx.color_dim,
            colors=ctx.colors.current,
            linestyle_by=lt,
            linestyles=ctx.linestyles(),
            style={"linewidth": rule.line_width, "alpha": rule.line_alpha},
        )
    ]
    if ctx.show_dots:
        ops.append(
            DrawOp(
                kind="points",
                category=DrawCategory.CURRENT,
                label="current markers",
                data=data,
                group_by=(ctx.color_dim,),
                color_by=ctx.color_dim,
                colors=ctx.colors.current,
                style={
                    "marker": rule.marker,
                    "markersize": rule.marker_size,
                    "alpha": rule.marker_alpha,
                },
                show_legend=False,
            )
        )
    return ops


def _historical_layer(ctx: LayerContext, position: int) -> List[DrawOp]:
    rule = ENCODING_RULES[DrawCategory.HISTORICAL]
    data = ctx.records.category(DrawCategory.HISTORICAL)
    ops = [
        DrawOp(
            kind="line",
            category=DrawCategory.HISTORICAL,
            label="historical lines",
            data=data,
            group_by=("model",),
            color_by="model",
            colors=ctx.colors.historical,
            style={"linewidth": rule.line_width, "alpha": rule.line_alpha},
            show_legend=not ctx.show_dots,
        )
    ]
    if ctx.show_dots:
        # zero-size pass seeds the legend glyph; the visible markers stay out of the legend
        ops.append(
            DrawOp(
                kind="points",
                category=DrawCategory.HISTORICAL,
                label="historical legend seed",
                data=data,
                group_by=("model",),
                color_by="model",
                colors=ctx.colors.historical,
                style={"marker": rule.marker, "markersize": 0.0},
            )
        )
        ops.append(
            DrawOp(
                kind="points",
                category=DrawCategory.HISTORICAL,
                label="historical markers",
                data=data,
                group_by=("model",),
                color_by="model",
                colors=ctx.colors.historical,
                style={
                    "marker": rule.marker,
                    "markersize": ctx.marker_policy.size_at(position),
                    "alpha": rule.marker_alpha,
                },
                show_legend=False,
            )
        )
    return ops


def _projected_layer(ctx: LayerContext, position: int) -> List[DrawOp]:
    rule = ENCODING_RULES[DrawCategory.PROJECTED]
    data = ctx.records.visible(DrawCategory.PROJECTED)
    if data.empty:
        return []
    lt = _linetype_col(ctx, data)
    key = color_source(DrawCategory.PROJECTED, ctx.color_dim, ctx.detailed_projection)
    common = dict(
        category=DrawCategory.PROJECTED,
        data=data,
        group_by=("identifier",),
        linestyle_by=lt,
        linestyles=ctx.linestyles(),
    )
    if ctx.detailed_projection:
        return [
            DrawOp(
                kind="line",
                label="projection legend seed",
                color_by=key,
                colors=ctx.colors.projected,
                style={"linewidth": 0.0},
                **common,
            ),
            DrawOp(
                kind="line",
                label="projection lines",
                color_by=key,
                colors=ctx.colors.projected,
                style={"linewidth": rule.line_width, "alpha": rule.line_alpha},
                show_legend=False,
                **common,
            ),
        ]
    return [
        DrawOp(
            kind="line",
            label="projection legend seed",
            alpha_by=key,
            alphas=ctx.colors.fades,
            style={"linewidth": 0.0, "color": "white"},
            **common,
        ),
        DrawOp(
            kind="line",
            label="projection lines",
            alpha_by=key,
            alphas=ctx.colors.fades,
            style={"linewidth": rule.line_width, "color": PROJECTION_GRAY},
            show_legend=False,
            **common,
        ),
    ]


_LAYER_BUILDERS: Dict[DrawCategory, Callable[[LayerContext, int], List[DrawOp]]] = {
    DrawCategory.CURRENT: _current_layer,
    DrawCategory.HISTORICAL: _historical_layer,
    DrawCategory.PROJECTED: _projected_layer,
}


def reference_ops(
    records: NormalizedRecords,
    hlines: Optional[pd.DataFrame] = None,
    hlines_labels: Optional[Mapping[str, str]] = None,
) -> List[DrawOp]:
    """Dashed vertical line at the first primary period plus optional horizontal lines."""
    ops = [
        DrawOp(
            kind="vline",
            category=None,
            label="first period",
            data=pd.DataFrame({"period": [records.first_period]}),
            style={"linestyle": "--", "color": REFERENCE_LINE_COLOR, "linewidth": 1.0},
            show_legend=False,
        )
    ]
    if hlines is None or len(hlines) == 0:
        return ops

    lines = hlines.loc[hlines["value"].notna()].copy()
    ops.append(
        DrawOp(
            kind="hline",
            category=None,
            label="horizontal lines",
            data=lines,
            style={"linestyle": "--", "color": HLINE_COLOR, "linewidth": 1.0},
            show_legend=False,
        )
    )
    if hlines_labels and "variable" in lines.columns:
        labelled = lines.loc[lines["variable"].isin(list(hlines_labels))].copy()
        if not labelled.empty:
            pmin, pmax = records.period_range
            labelled["label"] = labelled["variable"].map(hlines_labels)
            labelled["period"] = pmax - (pmax - pmin) / 4
            ops.append(
                DrawOp(
                    kind="text",
                    category=None,
                    label="horizontal line labels",
                    data=labelled,
                    style={"ha": "center", "va": "bottom"},
                    show_legend=False,
                )
            )
    return ops


def build_layers(
    records: NormalizedRecords,
    colors: ColorAssignment,
    *,
    color_dim: str = "identifier",
    linetype_dim: Optional[str] = None,
    show_dots: bool = True,
    detailed_projection: bool = False,
    priority: Sequence[DrawCategory] = DEFAULT_PRIORITY,
    marker_policy: Optional[HistoricalMarkerPolicy] = None,
    hlines: Optional[pd.DataFrame] = None,
    hlines_labels: Optional[Mapping[str, str]] = None,
) -> List[DrawOp]:
    """
    Build the ordered draw operations of the plot body.

    Category layers come first, bottom to top in the reverse of priority; absent
    categories are skipped but keep their position. Reference lines follow.
    Every op gets an increasing zorder so the list order is the stacking order.
    """
    ctx = LayerContext(
        records=records,
        colors=colors,
        color_dim=color_dim,
        linetype_dim=linetype_dim,
        show_dots=show_dots,
        detailed_projection=detailed_projection,
        marker_policy=marker_policy or HistoricalMarkerPolicy(),
    )
    ops: List[DrawOp] = []
    for position, category in enumerate(draw_order(priority)):
        if records.has(category):
            ops.extend(_LAYER_BUILDERS[category](ctx, position))
    ops.extend(reference_ops(records, hlines, hlines_labels))

    for i, op in enumerate(ops):
        op.zorder = 2.0 + i * 0.1
    logger.debug("Draw order: %s", [op.label for op in ops])
    return ops


def _select_panel(
    data: pd.DataFrame, panel: Optional[str], facet_dim: Optional[str]
) -> pd.DataFrame:
    if panel is None or not facet_dim or facet_dim not in data.columns:
        return data
    values = data[facet_dim]
    # rows without a facet value belong to every panel
    return data.loc[values.isna() | (values.astype(str) == panel)]


def draw_ops(
    ax,
    ops: Sequence[DrawOp],
    panel: Optional[str] = None,
    facet_dim: Optional[str] = None,
) -> None:
    """Execute draw operations on one axes, restricted to the rows of one facet panel."""
    for op in ops:
        data = _select_panel(op.data, panel, facet_dim)
        if op.kind == "vline":
            for x in data["period"]:
                ax.axvline(x, zorder=op.zorder, **op.style)
            continue
        if op.kind == "hline":
            for y in data["value"]:
                ax.axhline(y, zorder=op.zorder, **op.style)
            continue
        if op.kind == "text":
            for row in data.itertuples(index=False):
                ax.text(row.period, row.value, row.label, zorder=op.zorder, **op.style)
            continue
        if data.empty:
            continue

        if op.group_by:
            groups = (g for _, g in data.groupby(list(op.group_by), sort=False, dropna=False))
        else:
            groups = iter([data])
        for g in groups:
            g = g.sort_values("period")
            first = g.iloc[0]
            kwargs = dict(op.style)
            if op.color_by:
                kwargs["color"] = op.colors.get(str(first[op.color_by]), kwargs.get("color"))
            if op.alpha_by:
                kwargs["alpha"] = op.alphas.get(str(first[op.alpha_by]), kwargs.get("alpha"))
            if op.kind == "points":
                kwargs["linestyle"] = "none"
            elif op.linestyle_by:
                kwargs["linestyle"] = op.linestyles.get(str(first[op.linestyle_by]), "-")
            if op.show_legend and op.category is not None:
                key_col = op.color_by or op.alpha_by or op.group_by[0]
                kwargs["label"] = str(first[key_col])
                kwargs["gid"] = op.category.value
            else:
                kwargs["label"] = "_nolegend_"
            ax.plot(g["period"], g["value"], zorder=op.zorder, **kwargs)
