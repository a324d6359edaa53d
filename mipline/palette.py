"""
Deterministic color assignment for the series drawn in a plot.

Colors are looked up once per plot over the concatenated key lists of all
categories (CURRENT, HISTORICAL, PROJECTED, each sorted), so the same set of
keys always yields the same colors. Manual overrides replace the colors of one
category and leave every other entry untouched.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np
from matplotlib import colormaps
from matplotlib.colors import is_color_like, to_hex

from .errors import ValidationError
from .records import DrawCategory, NormalizedRecords, distinct

logger = logging.getLogger(__name__)

# Qualitative colormaps chained into one long palette; cycled when exhausted.
_PALETTE_MAPS = ("tab10", "tab20b", "tab20c", "Set1")

# Neutral gray used for aggregated (non-detailed) projections.
PROJECTION_GRAY: str = "#A1A194"

Palette = Callable[[Sequence[str]], List[str]]


def _base_colors() -> List[str]:
    colors: List[str] = []
    for name in _PALETTE_MAPS:
        cmap = colormaps[name]
        colors.extend(to_hex(c) for c in cmap.colors)
    # drop duplicates while preserving order
    return list(dict.fromkeys(colors))


def default_palette(keys: Sequence[str]) -> List[str]:
    """
    Return one hex color per entry of keys.

    Assignment is positional: the i-th key gets the i-th palette color, so the
    result depends only on the length and order of the list.
    """
    base = _base_colors()
    return [base[i % len(base)] for i in range(len(keys))]


def fade_levels(n: int) -> List[float]:
    """Alpha levels evenly spaced over [0.1, 1.0] for n projected keys; a single key gets 0.1."""
    if n <= 0:
        return []
    return [float(v) for v in np.linspace(0.1, 1.0, n)]


@dataclass
class ColorAssignment:
    """
    Key -> color mappings per draw category, in legend order.

    current keys are values of the color dimension, historical keys are model
    names, projected keys are model names or identifiers (detailed legend).
    fades maps projected keys to their alpha level.
    """

    current: Dict[str, str] = field(default_factory=dict)
    historical: Dict[str, str] = field(default_factory=dict)
    projected: Dict[str, str] = field(default_factory=dict)
    fades: Dict[str, float] = field(default_factory=dict)

    def for_category(self, category: DrawCategory) -> Dict[str, str]:
        if category is DrawCategory.CURRENT:
            return self.current
        if category is DrawCategory.HISTORICAL:
            return self.historical
        return self.projected

    def as_mapping(self) -> Dict[str, str]:
        """Flat key -> color view; on key collisions the earlier category wins."""
        merged: Dict[str, str] = {}
        for part in (self.current, self.historical, self.projected):
            for k, v in part.items():
                merged.setdefault(k, v)
        return merged


def color_source(
    category: DrawCategory, color_dim: str, detailed_projection: bool
) -> str:
    """Column whose values key into the color table for the given category."""
    if category is DrawCategory.CURRENT:
        return color_dim
    if category is DrawCategory.PROJECTED and detailed_projection:
        return "identifier"
    return "model"


def category_keys(
    records: NormalizedRecords, color_dim: str, detailed_projection: bool
) -> Dict[DrawCategory, List[str]]:
    """Sorted distinct color keys for each category (empty list when absent)."""
    keys: Dict[DrawCategory, List[str]] = {}
    for category in DrawCategory:
        rows = records.visible(category)
        col = color_source(category, color_dim, detailed_projection)
        keys[category] = distinct(rows[col]) if not rows.empty else []
    return keys


def _apply_override(
    target: Dict[str, str], manual: Sequence[str], what: str
) -> None:
    if len(manual) != len(target):
        raise ValidationError(
            f"Number of provided colors for {what} (#{len(manual)}) does not match "
            f"number of items defined in color dimension (#{len(target)})"
        )
    bad = [c for c in manual if not is_color_like(c)]
    if bad:
        raise ValidationError(f"Invalid color(s) provided for {what}: {bad}")
    for key, color in zip(list(target), manual):
        target[key] = color


def assign_colors(
    records: NormalizedRecords,
    color_dim: str = "identifier",
    detailed_projection: bool = False,
    manual_current: Optional[Sequence[str]] = None,
    manual_historical: Optional[Sequence[str]] = None,
    palette: Palette = default_palette,
) -> ColorAssignment:
    """
    Build the color table for a plot.

    Parameters:
        records: normalized working set.
        color_dim: column coloring the CURRENT series.
        detailed_projection: key PROJECTED colors by identifier instead of model.
        manual_current: colors replacing the CURRENT entries, one per sorted key.
        manual_historical: colors replacing the HISTORICAL entries, one per sorted key.
        palette: lookup mapping the full key list to colors.

    Raises:
        ValidationError: an override has the wrong length or holds invalid colors.
    """
    keys = category_keys(records, color_dim, detailed_projection)
    sources = (
        keys[DrawCategory.CURRENT]
        + keys[DrawCategory.HISTORICAL]
        + keys[DrawCategory.PROJECTED]
    )
    colors = palette(sources)
    if len(colors) != len(sources):
        raise ValidationError(
            f"palette returned {len(colors)} color(s) for {len(sources)} key(s)"
        )

    out = ColorAssignment()
    pos = 0
    for category in DrawCategory:
        part = out.for_category(category)
        for key in keys[category]:
            part[key] = to_hex(colors[pos], keep_alpha=False)
            pos += 1
    out.fades = dict(
        zip(keys[DrawCategory.PROJECTED], fade_levels(len(keys[DrawCategory.PROJECTED])))
    )

    if manual_current is not None:
        _apply_override(out.current, manual_current, "model data")
    if manual_historical is not None:
        _apply_override(out.historical, manual_historical, "historical data")

    logger.debug(
        "Assigned colors: %d current, %d historical, %d projected",
        len(out.current),
        len(out.historical),
        len(out.projected),
    )
    return out
