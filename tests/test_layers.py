import numpy as np
import pandas as pd
import pytest
from matplotlib.figure import Figure

from mipline.layers import (
    HistoricalMarkerPolicy,
    build_layers,
    draw_ops,
    draw_order,
)
from mipline.palette import PROJECTION_GRAY, assign_colors
from mipline.records import DrawCategory, normalize_records


def _build_inputs(with_secondary=True, regions=("World",)):
    rows = []
    for region in regions:
        for scen, base in (("SSP1", 1.0), ("SSP2", 2.0)):
            for i, period in enumerate((2020, 2030, 2040)):
                rows.append(("REMIND", scen, region, period, base + i))
    x = pd.DataFrame(rows, columns=["model", "scenario", "region", "period", "value"])
    x["variable"] = "Emi|CO2"
    x.loc[len(x)] = ["REMIND", "SSP1", regions[0], 2050, np.nan, "Emi|CO2"]

    x_hist = None
    if with_secondary:
        x_hist = pd.DataFrame(
            {
                "model": ["CEDS", "CEDS", "IMAGE", "IMAGE", "IMAGE"],
                "scenario": ["historical", "historical", "SSP2", "SSP2", "SSP2"],
                "region": [regions[0]] * 5,
                "variable": ["Emi|CO2"] * 5,
                "period": [2000, 2010, 2030, 2040, 2060],
                "value": [0.4, 0.6, 2.0, 2.5, 3.0],
            }
        )
    records = normalize_records(x, x_hist)
    colors = assign_colors(records)
    return records, colors


def _layer_categories(ops):
    seen = []
    for op in ops:
        if op.category is not None and op.category not in seen:
            seen.append(op.category)
    return seen


def test_draw_order_is_reverse_priority():
    assert draw_order() == (
        DrawCategory.PROJECTED,
        DrawCategory.HISTORICAL,
        DrawCategory.CURRENT,
    )


def test_default_priority_draws_current_last():
    records, colors = _build_inputs()
    ops = build_layers(records, colors)
    assert _layer_categories(ops) == [
        DrawCategory.PROJECTED,
        DrawCategory.HISTORICAL,
        DrawCategory.CURRENT,
    ]
    zorders = [op.zorder for op in ops]
    assert zorders == sorted(zorders)
    assert len(set(zorders)) == len(zorders)


def test_custom_priority_puts_historical_on_top():
    records, colors = _build_inputs()
    priority = (DrawCategory.HISTORICAL, DrawCategory.CURRENT, DrawCategory.PROJECTED)
    ops = build_layers(records, colors, priority=priority)
    assert _layer_categories(ops) == [
        DrawCategory.PROJECTED,
        DrawCategory.CURRENT,
        DrawCategory.HISTORICAL,
    ]


def test_historical_marker_size_depends_on_draw_position():
    records, colors = _build_inputs()
    policy = HistoricalMarkerPolicy(base_size=3.0, overdrawn_size=9.0)

    def marker_size(priority):
        ops = build_layers(records, colors, priority=priority, marker_policy=policy)
        (op,) = [o for o in ops if o.label == "historical markers"]
        return op.style["markersize"]

    # historical drawn first (bottom) keeps the base size
    assert marker_size((DrawCategory.CURRENT, DrawCategory.PROJECTED, DrawCategory.HISTORICAL)) == 3.0
    assert marker_size((DrawCategory.CURRENT, DrawCategory.HISTORICAL, DrawCategory.PROJECTED)) == 9.0
    assert marker_size((DrawCategory.HISTORICAL, DrawCategory.CURRENT, DrawCategory.PROJECTED)) == 9.0


def test_historical_layer_passes():
    records, colors = _build_inputs()
    ops = [o for o in build_layers(records, colors) if o.category is DrawCategory.HISTORICAL]
    assert [o.label for o in ops] == [
        "historical lines",
        "historical legend seed",
        "historical markers",
    ]
    lines, seed, markers = ops
    assert lines.style["alpha"] == pytest.approx(0.3)
    assert not lines.show_legend
    assert seed.style["markersize"] == 0.0 and seed.show_legend
    assert markers.style["marker"] == "+" and not markers.show_legend


def test_show_dots_false_draws_lines_only():
    records, colors = _build_inputs()
    ops = build_layers(records, colors, show_dots=False)
    assert all(op.kind != "points" for op in ops)


def test_projected_rows_stop_at_horizon():
    records, colors = _build_inputs()
    assert records.horizon == 2040
    ops = build_layers(records, colors)
    projected = [o for o in ops if o.category is DrawCategory.PROJECTED]
    assert projected
    for op in projected:
        assert op.data["period"].max() <= records.horizon


def test_projected_aggregated_and_detailed_modes():
    records, colors = _build_inputs()
    ops = build_layers(records, colors)
    seed, visible = [o for o in ops if o.category is DrawCategory.PROJECTED]
    assert seed.style["linewidth"] == 0.0
    assert visible.style["color"] == PROJECTION_GRAY
    assert visible.alpha_by == "model" and visible.color_by is None

    detailed_colors = assign_colors(records, detailed_projection=True)
    ops = build_layers(records, detailed_colors, detailed_projection=True)
    seed, visible = [o for o in ops if o.category is DrawCategory.PROJECTED]
    assert seed.style["linewidth"] == 0.0
    assert visible.color_by == "identifier"
    assert visible.style["alpha"] == pytest.approx(0.7)


def test_missing_values_never_reach_layers():
    records, colors = _build_inputs()
    for op in build_layers(records, colors):
        if op.kind in ("line", "points"):
            assert op.data["value"].notna().all()


def test_current_only_has_single_category_and_reference_line():
    records, colors = _build_inputs(with_secondary=False)
    ops = build_layers(records, colors)
    assert _layer_categories(ops) == [DrawCategory.CURRENT]
    (vline,) = [o for o in ops if o.kind == "vline"]
    assert list(vline.data["period"]) == [2020]
    assert vline.style["linestyle"] == "--"


def test_hline_labels_sit_a_quarter_span_from_the_right():
    records, colors = _build_inputs()
    hlines = pd.DataFrame({"variable": ["target", "limit"], "value": [1.5, 3.0]})
    ops = build_layers(records, colors, hlines=hlines, hlines_labels={"target": "Target"})
    (hline,) = [o for o in ops if o.kind == "hline"]
    assert list(hline.data["value"]) == [1.5, 3.0]
    (text,) = [o for o in ops if o.kind == "text"]
    pmin, pmax = 2000, 2060
    assert list(text.data["label"]) == ["Target"]
    assert text.data["period"].iloc[0] == pytest.approx(pmax - (pmax - pmin) / 4)


def test_draw_ops_on_axes():
    records, colors = _build_inputs(with_secondary=False)
    ops = build_layers(records, colors)
    fig = Figure()
    ax = fig.add_subplot()
    draw_ops(ax, ops)
    # two scenario lines, two marker sets, one vertical reference line
    assert len(ax.lines) == 5
    line_colors = {ln.get_color() for ln in ax.lines[:2]}
    assert line_colors == set(colors.current.values())


def test_draw_ops_respects_facet_panel():
    records, colors = _build_inputs(with_secondary=False, regions=("World", "EUR"))
    ops = build_layers(records, colors, show_dots=False)
    fig = Figure()
    ax = fig.add_subplot()
    draw_ops(ax, ops, panel="EUR", facet_dim="region")
    drawn = [ln for ln in ax.lines if ln.get_linestyle() != "--"]
    assert len(drawn) == 2
    for ln in drawn:
        assert len(ln.get_xdata()) == 3


def test_historical_lines_carry_legend_without_dots():
    records, colors = _build_inputs()
    ops = build_layers(records, colors, show_dots=False)
    (lines,) = [o for o in ops if o.category is DrawCategory.HISTORICAL]
    assert lines.show_legend


def test_draw_ops_labels_only_legend_passes():
    records, colors = _build_inputs()
    ops = build_layers(records, colors)
    fig = Figure()
    ax = fig.add_subplot()
    draw_ops(ax, ops)
    tagged = [(ln.get_gid(), ln.get_label()) for ln in ax.lines if ln.get_gid()]
    assert sorted(tagged) == [
        ("current", "SSP1"),
        ("current", "SSP2"),
        ("historical", "CEDS"),
        ("projected", "IMAGE"),
    ]
    (hist_seed,) = [ln for ln in ax.lines if ln.get_gid() == "historical"]
    assert hist_seed.get_markersize() == 0.0
    (proj_seed,) = [ln for ln in ax.lines if ln.get_gid() == "projected"]
    assert proj_seed.get_linewidth() == 0.0
    untagged = [ln for ln in ax.lines if not ln.get_gid()]
    assert untagged and all(ln.get_label().startswith("_") for ln in untagged)
