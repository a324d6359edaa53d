"""
Record normalization: cleans the primary and secondary tables and tags every
row with the draw category it is rendered under.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Sequence, Tuple, Union

import pandas as pd

from .errors import ConfigurationError, EmptyInputError, ValidationError

logger = logging.getLogger(__name__)

# Scenario name that marks observed (historical) reference data in the secondary table.
HISTORICAL_MARKER: str = "historical"

# Fallback legend title for the primary dataset when identifiers carry both model and scenario.
DEFAULT_COLOR_DIM_NAME: str = "Model output"

REQUIRED_COLUMNS = ("period", "value")
KEY_COLUMNS = ("model", "scenario")


class DrawCategory(str, Enum):
    """
    Draw category of a series record.

    - CURRENT:    the primary dataset being analyzed.
    - HISTORICAL: observed reference data (secondary rows whose scenario is "historical").
    - PROJECTED:  any other secondary scenario data, e.g. other models' projections.
    """

    CURRENT = "current"
    HISTORICAL = "historical"
    PROJECTED = "projected"


DEFAULT_PRIORITY: Tuple[DrawCategory, ...] = (
    DrawCategory.CURRENT,
    DrawCategory.HISTORICAL,
    DrawCategory.PROJECTED,
)

# Aliases kept for callers that name categories after the input arguments.
_PRIORITY_ALIASES = {
    "x": DrawCategory.CURRENT,
    "x_hist": DrawCategory.HISTORICAL,
    "x_proj": DrawCategory.PROJECTED,
}


def parse_priority(
    priority: Iterable[Union[DrawCategory, str]],
) -> Tuple[DrawCategory, ...]:
    """
    Convert a caller-supplied render priority into a tuple of DrawCategory.

    Accepts DrawCategory members, their names or values (case-insensitive) and the
    aliases "x", "x_hist", "x_proj". The result must be a permutation of all three
    categories.

    Raises:
        ConfigurationError: if an entry is unknown or the list is not a permutation.
    """
    parsed: list[DrawCategory] = []
    for item in priority:
        if isinstance(item, DrawCategory):
            parsed.append(item)
            continue
        token = str(item).strip()
        if token in _PRIORITY_ALIASES:
            parsed.append(_PRIORITY_ALIASES[token])
            continue
        try:
            parsed.append(DrawCategory(token.lower()))
        except ValueError:
            raise ConfigurationError(
                f"Unknown draw category in plot priority: {item!r}"
            ) from None

    if len(parsed) != len(DrawCategory) or set(parsed) != set(DrawCategory):
        raise ConfigurationError(
            "plot priority must be a permutation of "
            f"{[c.name for c in DrawCategory]}, got {[c.name for c in parsed]}"
        )
    return tuple(parsed)


def identifier_model_scen(df: pd.DataFrame) -> Tuple[pd.Series, Optional[str]]:
    """
    Derive a canonical identifier for each model/scenario pair.

    Returns (identifiers, deleted_info):
      - both model and scenario vary -> "<model>.<scenario>", deleted_info None
      - a single model               -> scenario name, deleted_info = the model name
      - a single scenario            -> model name, deleted_info = the scenario name
    Empty-string names are never reported as deleted_info.
    """
    if df.empty:
        return pd.Series([], index=df.index, dtype=object), None

    models = df["model"].astype(str)
    scenarios = df["scenario"].astype(str)
    n_models = models.nunique()
    n_scenarios = scenarios.nunique()

    if n_models == 1:
        deleted = models.iloc[0]
        return scenarios.rename("identifier"), (deleted or None)
    if n_scenarios == 1:
        deleted = scenarios.iloc[0]
        return models.rename("identifier"), (deleted or None)
    return (models + "." + scenarios).rename("identifier"), None


def _clean_table(df: pd.DataFrame, label: str) -> pd.DataFrame:
    """Copy df, check required columns, drop missing values and fill empty key columns."""
    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise ValidationError(f"{label} is missing required column(s): {missing}")

    out = df.copy()
    n_before = len(out)
    out = out.loc[out["value"].notna()].copy()
    dropped = n_before - len(out)
    if dropped:
        logger.debug("%s: dropped %d row(s) with missing value", label, dropped)

    for col in KEY_COLUMNS:
        if col not in out.columns or out[col].isna().all():
            out[col] = ""
    return out


def _is_absent(x_hist: Optional[pd.DataFrame]) -> bool:
    if x_hist is None:
        return True
    if len(x_hist) == 0:
        return True
    return "value" in x_hist.columns and bool(x_hist["value"].isna().all())


@dataclass
class NormalizedRecords:
    """
    Working set produced by normalize_records().

    Attributes:
        table: combined rows of every category with a "category" column.
        has_secondary: True when a usable historical/projected table was supplied.
        identifier_info: name removed while deriving identifiers of the primary
            table (e.g. the single model name), used as default legend title.
        first_period: minimum period of the primary table.
        horizon: maximum period over CURRENT and HISTORICAL rows; projected rows
            beyond it are never drawn.
    """

    table: pd.DataFrame
    has_secondary: bool
    identifier_info: Optional[str]
    first_period: float
    horizon: float

    def category(self, category: DrawCategory) -> pd.DataFrame:
        return self.table.loc[self.table["category"] == category]

    def visible(self, category: DrawCategory) -> pd.DataFrame:
        """Rows of a category that can be drawn; projected rows stop at the horizon."""
        rows = self.category(category)
        if category is DrawCategory.PROJECTED:
            rows = rows.loc[rows["period"] <= self.horizon]
        return rows

    def has(self, category: DrawCategory) -> bool:
        return bool((self.table["category"] == category).any())

    @property
    def period_range(self) -> Tuple[float, float]:
        periods = self.table["period"]
        return float(periods.min()), float(periods.max())

    def default_color_dim_name(self) -> str:
        return self.identifier_info or DEFAULT_COLOR_DIM_NAME


def normalize_records(
    x: pd.DataFrame,
    x_hist: Optional[pd.DataFrame] = None,
    color_dim: str = "identifier",
) -> NormalizedRecords:
    """
    Clean and classify the primary table and the optional historical/projected table.

    Steps:
      - drop rows with missing value in both tables
      - normalize all-missing model/scenario columns to ""
      - derive identifier where the input lacks one
      - tag primary rows CURRENT; secondary rows HISTORICAL when scenario equals
        HISTORICAL_MARKER, else PROJECTED
      - concatenate into one working table

    Raises:
        ValidationError: missing required columns, empty primary table, or unknown color_dim.
        ConfigurationError: color_dim other than "identifier" together with secondary data.
    """
    primary = _clean_table(x, "x")
    if primary.empty:
        raise ValidationError("x contains no rows with a non-missing value")

    identifier_info: Optional[str] = None
    if "identifier" not in primary.columns:
        primary["identifier"], identifier_info = identifier_model_scen(primary)
    primary["category"] = pd.Series(DrawCategory.CURRENT, index=primary.index, dtype=object)

    frames = [primary]
    has_secondary = False
    try:
        if _is_absent(x_hist):
            raise EmptyInputError("x_hist is empty or entirely missing")
        secondary = _clean_table(x_hist, "x_hist")
        if secondary.empty:
            raise EmptyInputError("x_hist has no rows with a non-missing value")
    except EmptyInputError as e:
        if x_hist is not None:
            logger.info("Ignoring secondary data: %s", e)
    else:
        has_secondary = True
        if "identifier" not in secondary.columns:
            secondary["identifier"], _ = identifier_model_scen(secondary)
        is_hist = secondary["scenario"].astype(str) == HISTORICAL_MARKER
        secondary["category"] = pd.Series(DrawCategory.PROJECTED, index=secondary.index, dtype=object)
        secondary.loc[is_hist, "category"] = DrawCategory.HISTORICAL
        frames.append(secondary)

    if has_secondary and color_dim != "identifier":
        raise ConfigurationError(
            "color dimension can only be chosen freely if no historical data is supplied"
        )
    if color_dim not in primary.columns:
        raise ValidationError(f"color dimension {color_dim!r} is not a column of x")

    table = pd.concat(frames, ignore_index=True, sort=False)
    for col in KEY_COLUMNS + ("identifier",):
        table[col] = table[col].fillna("").astype(str)

    observed = table.loc[table["category"] != DrawCategory.PROJECTED, "period"]
    records = NormalizedRecords(
        table=table,
        has_secondary=has_secondary,
        identifier_info=identifier_info,
        first_period=float(primary["period"].min()),
        horizon=float(observed.max()),
    )
    logger.debug(
        "Normalized %d row(s): %s",
        len(table),
        {c.name: int((table["category"] == c).sum()) for c in DrawCategory},
    )
    return records


def distinct(values: Sequence) -> list:
    """Sorted distinct values as strings."""
    return sorted({str(v) for v in values})
