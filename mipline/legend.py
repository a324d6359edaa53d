"""
Legend composition.

Two strategies share the same per-category legend bookkeeping:

- UnifiedLegendComposer attaches one legend block per scale (color, fill,
  alpha, linetype) directly to the figure.
- CompositeLegendComposer renders one small legend figure per category,
  rasterizes and crops it, and lays the crops out in a row whose widths follow
  the categories' label widths.

Label width measurement is injectable: the default counts characters,
font_text_width() measures rendered text with matplotlib's font metrics.
"""

import logging
import math
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np
from matplotlib.backends.backend_agg import FigureCanvasAgg
from matplotlib.figure import Figure
from matplotlib.font_manager import FontProperties
from matplotlib.lines import Line2D
from matplotlib.textpath import TextPath

from .layers import ENCODING_RULES, HistoricalMarkerPolicy, linestyle_map
from .palette import PROJECTION_GRAY, ColorAssignment
from .records import DrawCategory, NormalizedRecords

logger = logging.getLogger(__name__)

TextWidth = Callable[[str], float]

# Total character budget shared by the sub-legends of a composite legend.
LEGEND_CHAR_BUDGET: int = 50

# Plot body / legend row height ratio of a composite figure.
COMPOSITE_HEIGHT_RATIOS: Tuple[float, float] = (0.76, 0.24)

# Fraction of the figure height kept free for unified legends.
UNIFIED_LEGEND_AREA: float = 0.22

LEGEND_SEPARATORS = " |_."


def font_text_width(fontsize: float = 12.0, family: Optional[str] = None) -> TextWidth:
    """Return a measure giving the rendered width of a string in points."""
    prop = FontProperties(size=fontsize, family=family)

    def measure(text: str) -> float:
        if not text:
            return 0.0
        return float(TextPath((0, 0), text, prop=prop).get_extents().width)

    return measure


def shorten_legend(
    labels: Sequence[str], max_chars: int, separators: str = LEGEND_SEPARATORS
) -> List[str]:
    """
    Shorten legend labels to at most max_chars characters.

    Tokens (split at separators) shared by all labels at the front or the back
    are removed first; labels still too long are truncated with "...".
    """
    labels = [str(lbl) for lbl in labels]
    if max_chars <= 0 or all(len(lbl) <= max_chars for lbl in labels):
        return labels

    if len(labels) > 1:
        pattern = "([" + re.escape(separators) + "])"
        tokens = [re.split(pattern, lbl) for lbl in labels]
        while all(len(t) > 1 for t in tokens) and len({t[0] for t in tokens}) == 1:
            tokens = [t[1:] for t in tokens]
        while all(len(t) > 1 for t in tokens) and len({t[-1] for t in tokens}) == 1:
            tokens = [t[:-1] for t in tokens]
        labels = ["".join(t).strip(separators) or lbl for t, lbl in zip(tokens, labels)]

    out = []
    for lbl in labels:
        if len(lbl) > max_chars:
            lbl = lbl[: max_chars - 3] + "..." if max_chars > 3 else lbl[:max_chars]
        out.append(lbl)
    return out


@dataclass
class LegendContext:
    """Everything the legend composers need to know about a rendered plot."""

    records: NormalizedRecords
    colors: ColorAssignment
    color_dim: str = "identifier"
    color_dim_name: str = "Model output"
    linetype_dim: Optional[str] = None
    show_dots: bool = True
    detailed_projection: bool = False
    legend_ncol: int = 1
    fontsize: float = 14.0
    marker_policy: HistoricalMarkerPolicy = field(default_factory=HistoricalMarkerPolicy)
    seeds: Dict[DrawCategory, Dict[str, Line2D]] = field(default_factory=dict)

    def title(self, category: DrawCategory) -> str:
        return ENCODING_RULES[category].legend_title or self.color_dim_name

    def keys(self, category: DrawCategory) -> List[str]:
        return list(self.colors.for_category(category))

    def entry_count(self, category: DrawCategory) -> int:
        rows = self.records.visible(category)
        if rows.empty:
            return 0
        if category is DrawCategory.PROJECTED:
            col = "identifier" if self.detailed_projection else "model"
            return int(rows[col].nunique())
        return len(rows[["model", "scenario"]].drop_duplicates())


@dataclass(frozen=True)
class LegendShareRecord:
    category: DrawCategory
    title: str
    entries: int
    max_label_width: float
    share: float
    char_budget: int


@dataclass
class LegendPanel:
    """One legend block of the final figure; width is the relative row width (composite only)."""

    category: Optional[DrawCategory]
    title: str
    labels: List[str]
    width: Optional[float] = None
    artist: object = None


@dataclass
class LegendResult:
    mode: str
    panels: List[LegendPanel] = field(default_factory=list)
    shares: List[LegendShareRecord] = field(default_factory=list)

    @property
    def categories(self) -> List[DrawCategory]:
        return [p.category for p in self.panels if p.category is not None]


def compute_legend_shares(
    ctx: LegendContext, text_width: TextWidth = len, total_chars: int = LEGEND_CHAR_BUDGET
) -> List[LegendShareRecord]:
    """
    Width share of each non-empty category's legend.

    share = max label width (title included) / sum over the present categories;
    char_budget = ceil(share * total_chars). Categories without entries are left out.
    """
    present = []
    for category in DrawCategory:
        entries = ctx.entry_count(category)
        if entries == 0:
            continue
        title = ctx.title(category)
        width = max(text_width(s) for s in ctx.keys(category) + [title])
        present.append((category, title, entries, float(width)))

    total = sum(w for *_, w in present)
    records = []
    for category, title, entries, width in present:
        share = width / total if total > 0 else 1.0 / len(present)
        records.append(
            LegendShareRecord(
                category=category,
                title=title,
                entries=entries,
                max_label_width=width,
                share=share,
                char_budget=math.ceil(share * total_chars),
            )
        )
    return records


def legend_kwargs(ctx: LegendContext) -> Dict:
    return {
        "ncol": ctx.legend_ncol,
        "fontsize": ctx.fontsize - 2,
        "title_fontproperties": {"size": ctx.fontsize, "weight": "bold"},
        "alignment": "left",
    }


def collect_legend_seeds(axes: Sequence) -> Dict[DrawCategory, Dict[str, Line2D]]:
    """
    Legend-carrying artists drawn by draw_ops(), per category and key.

    Only artists tagged with a category gid and a public label are collected; the
    first artist found for a key wins.
    """
    seeds: Dict[DrawCategory, Dict[str, Line2D]] = {}
    for ax in axes:
        for line in ax.lines:
            gid = line.get_gid()
            label = line.get_label()
            if not gid or label.startswith("_"):
                continue
            seeds.setdefault(DrawCategory(gid), {}).setdefault(label, line)
    return seeds


def glyph_overrides(ctx: LegendContext, category: DrawCategory, key: str, color: str) -> Dict:
    """Legend glyph properties replacing those of the seed artist."""
    rule = ENCODING_RULES[category]
    if category is DrawCategory.CURRENT:
        return {
            "color": color,
            "linewidth": rule.line_width,
            "linestyle": "-",
            "alpha": rule.line_alpha,
            "marker": rule.marker if ctx.show_dots else "None",
            "markersize": rule.marker_size,
        }
    if category is DrawCategory.HISTORICAL:
        if ctx.show_dots:
            return {
                "color": color,
                "linestyle": "none",
                "marker": rule.marker,
                "markersize": ctx.marker_policy.overdrawn_size,
                "alpha": None,
            }
        return {"color": color, "linewidth": rule.line_width, "linestyle": "-", "alpha": rule.line_alpha}
    if ctx.detailed_projection:
        return {"color": color, "linewidth": 1.0, "linestyle": "-", "alpha": rule.marker_alpha}
    return {
        "color": PROJECTION_GRAY,
        "linewidth": 1.0,
        "linestyle": "-",
        "alpha": ctx.colors.fades.get(key, rule.marker_alpha),
    }


def legend_handles(ctx: LegendContext, category: DrawCategory) -> List[Line2D]:
    """
    Legend glyphs for the keys of one category.

    Each glyph starts from the key's seed artist (see collect_legend_seeds) and
    then takes the category's glyph overrides; keys without a drawn seed get a
    bare Line2D.
    """
    seeds = ctx.seeds.get(category, {})
    handles: List[Line2D] = []
    for key, color in ctx.colors.for_category(category).items():
        h = Line2D([], [])
        seed = seeds.get(key)
        if seed is not None:
            h.update_from(seed)
            h.set_label(key)
        h.set(**glyph_overrides(ctx, category, key, color))
        handles.append(h)
    return handles


def linetype_handles(ctx: LegendContext) -> Tuple[List[Line2D], List[str]]:
    styles = linestyle_map(ctx.records, ctx.linetype_dim)
    handles = [Line2D([], [], color="black", linestyle=ls) for ls in styles.values()]
    return handles, list(styles)


class LegendComposer(ABC):
    """Places the legend of a plot; reserve() runs before, attach() after the body is drawn."""

    mode: str = ""

    def __init__(self, text_width: TextWidth = len) -> None:
        self.text_width = text_width

    @abstractmethod
    def reserve(self, fig):
        """Return the SubplotSpec of fig available to the plot body."""

    @abstractmethod
    def attach(self, fig, ctx: LegendContext) -> LegendResult:
        """Add the legend to fig."""

    def shares(self, ctx: LegendContext) -> List[LegendShareRecord]:
        return compute_legend_shares(ctx, self.text_width)


class UnifiedLegendComposer(LegendComposer):
    """
    Legend blocks attached to the figure below the plot body, ordered
    color (1), fill (2), alpha (3), linetype (4). Empty blocks are skipped.
    """

    mode = "unified"

    def __init__(self, text_width: TextWidth = len, legend_area: float = UNIFIED_LEGEND_AREA) -> None:
        super().__init__(text_width)
        self.legend_area = legend_area

    def reserve(self, fig):
        return fig.add_gridspec(1, 1, bottom=self.legend_area)[0]

    def attach(self, fig, ctx: LegendContext) -> LegendResult:
        blocks = []
        for category in DrawCategory:
            keys = ctx.keys(category)
            if keys:
                blocks.append((category, ctx.title(category), legend_handles(ctx, category), keys))
        lt_handles, lt_labels = linetype_handles(ctx)
        if lt_handles:
            blocks.append((None, ctx.linetype_dim, lt_handles, lt_labels))

        result = LegendResult(mode=self.mode, shares=self.shares(ctx))
        n = len(blocks)
        for i, (category, title, handles, labels) in enumerate(blocks):
            leg = fig.legend(
                handles,
                labels,
                title=title,
                loc="upper center",
                bbox_to_anchor=((i + 0.5) / n, self.legend_area - 0.06),
                frameon=False,
                **legend_kwargs(ctx),
            )
            result.panels.append(LegendPanel(category, title, list(labels), artist=leg))
        logger.info("Unified legend with %d block(s)", n)
        return result


def _crop_legend(fig: Figure, legend) -> np.ndarray:
    canvas = fig.canvas
    canvas.draw()
    bbox = legend.get_window_extent()
    img = np.asarray(canvas.buffer_rgba())
    h, w = img.shape[:2]
    x0, x1 = max(0, math.floor(bbox.x0)), min(w, math.ceil(bbox.x1))
    y0, y1 = max(0, math.floor(h - bbox.y1)), min(h, math.ceil(h - bbox.y0))
    return img[y0:y1, x0:x1].copy()


def render_sub_legend(ctx: LegendContext, record: LegendShareRecord, dpi: float = 100.0) -> Tuple[np.ndarray, List[str]]:
    """
    Render the legend of one category on its own figure and return the cropped
    RGBA image together with the (shortened) labels.
    """
    labels = shorten_legend(ctx.keys(record.category), record.char_budget)
    rows = math.ceil(len(labels) / max(1, ctx.legend_ncol)) + 2
    fig = Figure(figsize=(10, max(2.0, rows * ctx.fontsize / 36.0)), dpi=dpi)
    FigureCanvasAgg(fig)
    leg = fig.legend(
        legend_handles(ctx, record.category),
        labels,
        title=record.title,
        loc="center",
        frameon=False,
        **legend_kwargs(ctx),
    )
    return _crop_legend(fig, leg), labels


class CompositeLegendComposer(LegendComposer):
    """
    Sub-legends rendered one per category and arranged in a single row under the
    plot body; row widths follow the categories' label-width shares.
    """

    mode = "composite"

    def __init__(
        self,
        text_width: TextWidth = len,
        height_ratios: Tuple[float, float] = COMPOSITE_HEIGHT_RATIOS,
    ) -> None:
        super().__init__(text_width)
        self.height_ratios = height_ratios
        self._grid = None

    def reserve(self, fig):
        self._grid = fig.add_gridspec(2, 1, height_ratios=list(self.height_ratios))
        return self._grid[0]

    def attach(self, fig, ctx: LegendContext) -> LegendResult:
        if self._grid is None:
            raise RuntimeError("reserve() must be called before attach()")
        shares = self.shares(ctx)
        result = LegendResult(mode=self.mode, shares=shares)
        if not shares:
            return result

        row = self._grid[1].subgridspec(1, len(shares), width_ratios=[r.share for r in shares])
        for i, record in enumerate(shares):
            image, labels = render_sub_legend(ctx, record, dpi=fig.dpi)
            ax = fig.add_subplot(row[0, i])
            ax.imshow(image)
            ax.set_anchor("N")
            ax.set_axis_off()
            result.panels.append(
                LegendPanel(record.category, record.title, labels, width=record.share, artist=ax)
            )
        logger.info(
            "Composite legend: %s",
            ", ".join(f"{r.category.name}={r.share:.2f}" for r in shares),
        )
        return result


def make_legend_composer(unified: bool = True, text_width: TextWidth = len) -> LegendComposer:
    if unified:
        return UnifiedLegendComposer(text_width)
    return CompositeLegendComposer(text_width)
