from __future__ import annotations

import math
from typing import Any, Callable

import pandas as pd

HH_SIZE_ORDER = ["1-4", "5-6", "7-9", ">=10"]
AGE_GROUP_ORDER = [f"{start}-{start + 4}" for start in range(0, 95, 5)] + ["95+"]
CHILD_AGE_ORDER = ["0-5", "6-11", "12-23", "24-35", "36-47", "48-59"]
SEX_ORDER = ["Male", "Female"]
WASTING_ORDER = ["No wasting", "Moderate wasting", "Severe wasting"]

# Half-open month bounds [lower, upper) for CHILD_AGE_ORDER.
CHILD_AGE_BOUNDS = [(0, 6), (6, 12), (12, 24), (24, 36), (36, 48), (48, 60)]

MALE_CODE = 1


def _as_number(value: Any) -> float | None:
    if value is None or value is pd.NA:
        return None
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def household_size_category(size: Any) -> str | None:
    value = _as_number(size)
    if value is None or value < 0:
        return None
    if value <= 4:
        return "1-4"
    if value <= 6:
        return "5-6"
    if value <= 9:
        return "7-9"
    return ">=10"


def age_group(age_years: Any) -> str | None:
    value = _as_number(age_years)
    if value is None or value < 0:
        return None
    if value >= 95:
        return "95+"
    start = int(value // 5) * 5
    return f"{start}-{start + 4}"


def child_age_group(age_months: Any) -> str | None:
    value = _as_number(age_months)
    if value is None:
        return None
    for label, (lower, upper) in zip(CHILD_AGE_ORDER, CHILD_AGE_BOUNDS):
        if lower <= value < upper:
            return label
    return None


def sex_label(code: Any) -> str | None:
    # Null codes stay null instead of falling through to "Female".
    value = _as_number(code)
    if value is None:
        return None
    if value == MALE_CODE:
        return "Male"
    return "Female"


def wasting_status(zscore: Any) -> str | None:
    value = _as_number(zscore)
    if value is None:
        return None
    if value >= -2:
        return "No wasting"
    if value > -3:
        return "Moderate wasting"
    return "Severe wasting"


# Derived column -> (source column, rule, display order)
DERIVATIONS: dict[str, tuple[str, Callable[[Any], str | None], list[str]]] = {
    "HhSizeCategory": ("hh_size", household_size_category, HH_SIZE_ORDER),
    "AgeGroup": ("age_years", age_group, AGE_GROUP_ORDER),
    "ChildAgeGroup": ("age_months", child_age_group, CHILD_AGE_ORDER),
    "Sex": ("sex", sex_label, SEX_ORDER),
    "NutritionStatus": ("wfhz", wasting_status, WASTING_ORDER),
}

CATEGORY_ORDERS = {name: order for name, (_, _, order) in DERIVATIONS.items()}


def ordered_categorical(values: pd.Series | list[Any], order: list[str]) -> pd.Categorical:
    return pd.Categorical(values, categories=order, ordered=True)


def recode_series(series: pd.Series, rule: Callable[[Any], str | None], order: list[str]) -> pd.Series:
    labels = series.astype("object").map(rule)
    return pd.Series(ordered_categorical(labels, order), index=series.index, name=series.name)


def derive_columns(joined: pd.DataFrame) -> pd.DataFrame:
    derived: dict[str, pd.Series] = {}
    for column, (source, rule, order) in DERIVATIONS.items():
        if source not in joined.columns:
            continue
        derived[column] = recode_series(joined[source], rule, order).rename(column)
    return joined.assign(**derived)


def out_of_range_report(table: pd.DataFrame) -> dict[str, dict[str, Any]]:
    report: dict[str, dict[str, Any]] = {}
    for column, (source, _, _) in DERIVATIONS.items():
        if column not in table.columns or source not in table.columns:
            continue
        has_input = table[source].notna()
        no_category = table[column].isna()
        offending = table.loc[has_input & no_category, source]
        report[column] = {
            "source": source,
            "rows_with_input": int(has_input.sum()),
            "out_of_range": int(len(offending)),
            "out_of_range_sample": offending.head(10).tolist(),
        }
    return report
