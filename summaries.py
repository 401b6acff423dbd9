from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Union

import pandas as pd

RATIO_UNDEFINED = pd.NA
PERCENT_UNDEFINED = "n/a"
WHOLE_TABLE = "*"
TOTAL_LABEL = "Total"

CONSENT_YES = {"yes", "y", "1"}

SUBPOPULATION_COLUMNS = {
    "n_under5": "Under5",
    "n_women_15_49": "Women15to49",
    "n_over60": "Over60",
}


@dataclass(frozen=True)
class Count:
    where: Callable[[pd.DataFrame], pd.Series] | None = None
    column: str | None = None


@dataclass(frozen=True)
class Sum:
    column: str


@dataclass(frozen=True)
class Ratio:
    numerator: str
    denominator: str


@dataclass(frozen=True)
class Percent:
    """Percentage of two metrics rendered as text, e.g. ``"12.5%"``.

    ``within`` picks where the denominator is evaluated: ``None`` uses the
    same summary row, ``WHOLE_TABLE`` the whole input, and a column name the
    rows sharing that column's value with the summary row.
    """

    numerator: str
    denominator: str
    digits: int = 1
    within: str | None = None


Metric = Union[Count, Sum, Ratio, Percent]


def _is_missing(value: Any) -> bool:
    if value is None or value is pd.NA:
        return True
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def safe_ratio(numerator: Any, denominator: Any) -> Any:
    if _is_missing(numerator) or _is_missing(denominator) or denominator == 0:
        return RATIO_UNDEFINED
    return float(numerator) / float(denominator)


def format_percent(numerator: Any, denominator: Any, digits: int = 1) -> str:
    if _is_missing(numerator) or _is_missing(denominator) or denominator == 0:
        return PERCENT_UNDEFINED
    share = Decimal(str(numerator)) * 100 / Decimal(str(denominator))
    # ROUND_HALF_UP rounds ties away from zero for both signs.
    rounded = share.quantize(Decimal(1).scaleb(-digits), rounding=ROUND_HALF_UP)
    return f"{rounded}%"


def _reference(values: dict[str, Any], name: str, requested_by: str) -> Any:
    if name not in values:
        raise KeyError(f"Metric '{requested_by}' references '{name}', which is not defined before it.")
    return values[name]


def _evaluate(
    frame: pd.DataFrame,
    metrics: dict[str, Metric],
    denominator_lookup: Callable[[Percent, pd.DataFrame], Any] | None = None,
) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for name, metric in metrics.items():
        if isinstance(metric, Count):
            mask = pd.Series(True, index=frame.index)
            if metric.column is not None:
                mask &= frame[metric.column].notna()
            if metric.where is not None:
                mask &= metric.where(frame).fillna(False).astype(bool)
            values[name] = int(mask.sum())
        elif isinstance(metric, Sum):
            series = frame[metric.column]
            total = pd.to_numeric(series, errors="coerce").sum(skipna=True)
            values[name] = int(total) if pd.api.types.is_integer_dtype(series.dtype) else float(total)
        elif isinstance(metric, Ratio):
            values[name] = safe_ratio(
                _reference(values, metric.numerator, name),
                _reference(values, metric.denominator, name),
            )
        elif isinstance(metric, Percent):
            numerator = _reference(values, metric.numerator, name)
            if metric.within is None or denominator_lookup is None:
                denominator = _reference(values, metric.denominator, name)
            else:
                denominator = denominator_lookup(metric, frame)
            values[name] = format_percent(numerator, denominator, metric.digits)
        else:
            raise TypeError(f"Unsupported metric type for '{name}': {type(metric).__name__}")
    return values


def _group_key(key: Any) -> tuple:
    return key if isinstance(key, tuple) else (key,)


def summarize(
    table: pd.DataFrame,
    by: str | list[str],
    metrics: dict[str, Metric],
    totals_label: str | None = None,
) -> pd.DataFrame:
    by = [by] if isinstance(by, str) else list(by)
    within_cols = {
        m.within for m in metrics.values() if isinstance(m, Percent) and m.within not in (None, WHOLE_TABLE)
    }
    missing = [c for c in by + sorted(within_cols) if c not in table.columns]
    if missing:
        raise KeyError(f"Grouping columns missing from table: {missing}")

    work = table.dropna(subset=by)
    base_metrics = {n: m for n, m in metrics.items() if not isinstance(m, Percent)}
    overall = _evaluate(work, base_metrics)
    partial: dict[str, dict[Any, dict[str, Any]]] = {
        col: {key: _evaluate(part, base_metrics) for key, part in work.groupby(col, observed=True)}
        for col in within_cols
    }

    def _lookup(metric: Percent, frame: pd.DataFrame) -> Any:
        if metric.within == WHOLE_TABLE:
            return _reference(overall, metric.denominator, metric.denominator)
        key = frame[metric.within].iloc[0]
        return _reference(partial[metric.within][key], metric.denominator, metric.denominator)

    rows: list[dict[str, Any]] = []
    if not work.empty:
        for key, frame in work.groupby(by, observed=True, sort=True):
            rows.append({**dict(zip(by, _group_key(key))), **_evaluate(frame, metrics, _lookup)})

    if totals_label is not None:
        totals = _evaluate(work, metrics, lambda m, _: _reference(overall, m.denominator, m.denominator))
        rows.append({by[0]: totals_label, **{c: pd.NA for c in by[1:]}, **totals})

    out = pd.DataFrame(rows, columns=by + list(metrics))
    for col in by:
        if isinstance(table[col].dtype, pd.CategoricalDtype):
            categories = list(table[col].cat.categories)
            if totals_label is not None and col == by[0]:
                categories.append(totals_label)
            out[col] = pd.Categorical(out[col], categories=categories, ordered=True)
    return out


def pyramid_counts(
    table: pd.DataFrame,
    sex_col: str = "Sex",
    age_col: str = "AgeGroup",
    negate: str = "Male",
) -> pd.DataFrame:
    counts = summarize(table, [sex_col, age_col], {"AbsPersons": Count()})
    flipped = counts[sex_col].astype("object") == negate
    counts["Persons"] = counts["AbsPersons"].where(~flipped, -counts["AbsPersons"])
    return counts[[sex_col, age_col, "Persons", "AbsPersons"]]


def restore_magnitude(pyramid: pd.DataFrame, sex_col: str = "Sex", negate: str = "Male") -> pd.Series:
    flipped = pyramid[sex_col].astype("object") == negate
    return pyramid["Persons"].where(~flipped, -pyramid["Persons"]).rename("Persons")


def _consented(frame: pd.DataFrame) -> pd.Series:
    return frame["consent"].astype("string").str.strip().str.lower().isin(CONSENT_YES)


def build_summaries(derived: pd.DataFrame, key: str = "interview_id") -> dict[str, pd.DataFrame]:
    summaries: dict[str, pd.DataFrame] = {}

    households = derived.drop_duplicates(subset=[key]) if key in derived.columns else derived
    if "HhSizeCategory" in households.columns:
        summaries["household_size"] = summarize(
            households,
            "HhSizeCategory",
            {
                "Households": Count(),
                "Share": Percent("Households", "Households", within=WHOLE_TABLE),
            },
            totals_label=TOTAL_LABEL,
        )

        composition: dict[str, Metric] = {
            "Households": Count(),
            "Persons": Sum("hh_size"),
            "MeanSize": Ratio("Persons", "Households"),
        }
        for source, label in SUBPOPULATION_COLUMNS.items():
            if source in households.columns:
                composition[label] = Sum(source)
                composition[f"{label}Share"] = Percent(label, "Persons")
        summaries["household_composition"] = summarize(
            households, "HhSizeCategory", composition, totals_label=TOTAL_LABEL
        )

    if {"Sex", "AgeGroup"}.issubset(derived.columns):
        summaries["population_pyramid"] = pyramid_counts(derived)
        summaries["age_sex"] = summarize(
            derived,
            ["AgeGroup", "Sex"],
            {
                "Persons": Count(),
                "Share": Percent("Persons", "Persons", within=WHOLE_TABLE),
            },
        )

    if {"Sex", "ChildAgeGroup"}.issubset(derived.columns):
        summaries["child_age_sex"] = summarize(derived, ["ChildAgeGroup", "Sex"], {"Children": Count()})

    if "NutritionStatus" in derived.columns:
        summaries["wasting"] = summarize(
            derived,
            "NutritionStatus",
            {
                "Children": Count(),
                "Share": Percent("Children", "Children", within=WHOLE_TABLE),
            },
            totals_label=TOTAL_LABEL,
        )
        if "Sex" in derived.columns:
            summaries["wasting_by_sex"] = summarize(
                derived,
                ["Sex", "NutritionStatus"],
                {
                    "Children": Count(),
                    "Share": Percent("Children", "Children", within="Sex"),
                },
            )

    if {"Sex", "consent"}.issubset(derived.columns):
        summaries["consent_by_sex"] = summarize(
            derived,
            "Sex",
            {
                "Eligible": Count(column="consent"),
                "Consented": Count(where=_consented),
                "ConsentRate": Ratio("Consented", "Eligible"),
                "ConsentShare": Percent("Consented", "Eligible"),
            },
            totals_label=TOTAL_LABEL,
        )

    return summaries
