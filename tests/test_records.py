import numpy as np
import pandas as pd
import pytest

from mipline.errors import ConfigurationError, ValidationError
from mipline.records import (
    DrawCategory,
    identifier_model_scen,
    normalize_records,
    parse_priority,
)


def _primary():
    return pd.DataFrame(
        {
            "model": ["REMIND"] * 6,
            "scenario": ["SSP1"] * 3 + ["SSP2"] * 3,
            "region": ["World"] * 6,
            "variable": ["Emi|CO2"] * 6,
            "period": [2020, 2030, 2040] * 2,
            "value": [1.0, 2.0, np.nan, 1.5, 2.5, 3.5],
        }
    )


def _secondary():
    return pd.DataFrame(
        {
            "model": ["CEDS", "CEDS", "EDGAR", "IMAGE", "IMAGE", "IMAGE"],
            "scenario": ["historical"] * 3 + ["scenarioA"] * 3,
            "region": ["World"] * 6,
            "variable": ["Emi|CO2"] * 6,
            "period": [2000, 2010, 2010, 2030, 2050, 2070],
            "value": [0.5, 0.8, 0.7, 2.0, 2.2, 2.4],
        }
    )


def test_missing_values_are_dropped():
    rec = normalize_records(_primary())
    assert len(rec.table) == 5
    assert rec.table["value"].notna().all()
    assert set(rec.table["category"]) == {DrawCategory.CURRENT}


def test_identifier_single_model_uses_scenario_names():
    rec = normalize_records(_primary())
    assert sorted(rec.table["identifier"].unique()) == ["SSP1", "SSP2"]
    assert rec.identifier_info == "REMIND"
    assert rec.default_color_dim_name() == "REMIND"


def test_identifier_combines_model_and_scenario_when_both_vary():
    df = pd.DataFrame(
        {
            "model": ["A", "A", "B"],
            "scenario": ["s1", "s2", "s1"],
            "period": [2020, 2020, 2020],
            "value": [1.0, 2.0, 3.0],
        }
    )
    ids, deleted = identifier_model_scen(df)
    assert list(ids) == ["A.s1", "A.s2", "B.s1"]
    assert deleted is None


def test_existing_identifier_is_kept():
    df = _primary()
    df["identifier"] = "custom"
    rec = normalize_records(df)
    assert set(rec.table["identifier"]) == {"custom"}
    assert rec.default_color_dim_name() == "Model output"


def test_secondary_rows_are_split_into_historical_and_projected():
    rec = normalize_records(_primary(), _secondary())
    hist = rec.category(DrawCategory.HISTORICAL)
    proj = rec.category(DrawCategory.PROJECTED)
    assert set(hist["model"]) == {"CEDS", "EDGAR"}
    assert set(proj["scenario"]) == {"scenarioA"}
    assert rec.has_secondary
    # every row carries exactly one category
    assert len(hist) + len(proj) + len(rec.category(DrawCategory.CURRENT)) == len(rec.table)


def test_horizon_is_max_over_current_and_historical():
    rec = normalize_records(_primary(), _secondary())
    assert rec.horizon == 2040
    assert rec.first_period == 2020
    visible = rec.visible(DrawCategory.PROJECTED)
    assert list(visible["period"]) == [2030]


@pytest.mark.parametrize(
    "x_hist",
    [
        None,
        pd.DataFrame(columns=["model", "scenario", "period", "value"]),
        pd.DataFrame({"model": ["CEDS"], "scenario": ["historical"], "period": [2000], "value": [np.nan]}),
    ],
)
def test_absent_secondary_degrades_to_current_only(x_hist):
    rec = normalize_records(_primary(), x_hist)
    assert not rec.has_secondary
    assert set(rec.table["category"]) == {DrawCategory.CURRENT}


def test_free_color_dim_requires_no_historical_data():
    with pytest.raises(ConfigurationError):
        normalize_records(_primary(), _secondary(), color_dim="scenario")
    rec = normalize_records(_primary(), None, color_dim="scenario")
    assert len(rec.table) == 5


def test_unknown_color_dim_is_rejected():
    with pytest.raises(ValidationError):
        normalize_records(_primary(), color_dim="unit")


def test_unknown_color_dim_with_secondary_is_a_configuration_error():
    with pytest.raises(ConfigurationError):
        normalize_records(_primary(), _secondary(), color_dim="unit")


def test_empty_model_and_scenario_become_empty_strings():
    df = pd.DataFrame(
        {
            "scenario": [np.nan, np.nan],
            "period": [2020, 2030],
            "value": [1.0, 2.0],
        }
    )
    rec = normalize_records(df)
    assert list(rec.table["model"]) == ["", ""]
    assert list(rec.table["scenario"]) == ["", ""]
    assert rec.default_color_dim_name() == "Model output"


def test_missing_required_column_is_rejected():
    df = _primary().drop(columns=["period"])
    with pytest.raises(ValidationError) as excinfo:
        normalize_records(df)
    assert "period" in str(excinfo.value)


def test_parse_priority_accepts_names_and_aliases():
    assert parse_priority(["x_hist", "x", "x_proj"]) == (
        DrawCategory.HISTORICAL,
        DrawCategory.CURRENT,
        DrawCategory.PROJECTED,
    )
    assert parse_priority(["projected", "CURRENT", DrawCategory.HISTORICAL])[0] is DrawCategory.PROJECTED


@pytest.mark.parametrize(
    "priority",
    [
        ["x", "x", "x_proj"],
        ["x", "x_hist"],
        ["x", "x_hist", "x_proj", "x"],
        ["x", "x_hist", "observed"],
    ],
)
def test_parse_priority_rejects_non_permutations(priority):
    with pytest.raises(ConfigurationError):
        parse_priority(priority)
