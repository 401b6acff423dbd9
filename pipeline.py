from __future__ import annotations

import argparse
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pandas as pd

from charts import build_figures, export_png_pack
from recode import CATEGORY_ORDERS, derive_columns, out_of_range_report
from summaries import TOTAL_LABEL, build_summaries

JOIN_KEY = "interview_id"
USER_MISSING_CODES = frozenset({-999999999})

DEFAULT_HOUSEHOLD_PATHS = [
    Path("data/household.xlsx"),
    Path("data/household.csv"),
]
DEFAULT_INDIVIDUAL_PATHS = [
    Path("data/individual.xlsx"),
    Path("data/individual.csv"),
]

OUTPUT_DIR = Path("outputs")
TABLE_DIR = OUTPUT_DIR / "tables"
CHART_DIR = OUTPUT_DIR / "charts"
WORKBOOK_NAME = "survey_summaries.xlsx"

SEMANTIC_TYPES = {"identifier", "integer", "real", "category"}


@dataclass(frozen=True)
class ColumnSpec:
    semantic_type: str
    required: bool = True
    export_name: str | None = None
    fallback_patterns: tuple[str, ...] = field(default_factory=tuple)


HOUSEHOLD_SCHEMA: dict[str, ColumnSpec] = {
    "interview_id": ColumnSpec("identifier", True, "interview__id", ("interview_id", "interview id", "interview__key")),
    "hh_size": ColumnSpec("integer", True, "hh_size", ("household size", "hhsize", "hh_members")),
    "n_under5": ColumnSpec("integer", False, "n_under5", ("under5", "under_5", "u5")),
    "n_women_15_49": ColumnSpec("integer", False, "n_women_15_49", ("women_15_49", "wra")),
    "n_over60": ColumnSpec("integer", False, "n_over60", ("over60", "over_60", "elderly")),
    "region": ColumnSpec("category", False, "region", ("region", "district")),
}

INDIVIDUAL_SCHEMA: dict[str, ColumnSpec] = {
    "interview_id": ColumnSpec("identifier", True, "interview__id", ("interview_id", "interview id", "interview__key")),
    "person_id": ColumnSpec("identifier", False, "person_id", ("member__id", "person id", "roster")),
    "age_years": ColumnSpec("real", True, "age_years", ("age in years", "age_year", "ageyears")),
    "age_months": ColumnSpec("real", False, "age_months", ("age in months", "age_month", "agemons")),
    "sex": ColumnSpec("integer", True, "sex", ("gender", "sex_code")),
    "wfhz": ColumnSpec("real", False, "wfhz", ("whz", "weight for height", "wfh_z")),
    "consent": ColumnSpec("category", False, "consent", ("consent", "agree")),
}

SUMMARY_NUMERIC_COLUMNS = [
    "Households",
    "Persons",
    "AbsPersons",
    "Children",
    "Eligible",
    "Consented",
    "ConsentRate",
    "MeanSize",
    "Under5",
    "Women15to49",
    "Over60",
]

SUMMARY_CATEGORY_COLUMNS = ["HhSizeCategory", "AgeGroup", "ChildAgeGroup", "Sex", "NutritionStatus"]


def _normalize_identifier(series: pd.Series) -> pd.Series:
    clean = series.astype("string").str.strip()
    # Numeric exports turn ids like 12 into "12.0".
    clean = clean.str.replace(r"^(-?\d+)\.0+$", r"\1", regex=True)
    return clean.mask(clean.isna() | (clean == "") | (clean.str.lower() == "nan"), pd.NA)


def _normalize_label(series: pd.Series) -> pd.Series:
    clean = series.astype("string").str.strip().str.lower()
    # A blank cell promotes coded labels like 1 to float, giving "1.0".
    clean = clean.str.replace(r"^(-?\d+)\.0+$", r"\1", regex=True)
    return clean.mask(clean.isna() | (clean == "") | (clean == "nan"), pd.NA)


def _resolve_input_path(input_path: str | None, defaults: list[Path], label: str) -> Path:
    if input_path:
        candidate = Path(input_path)
        if not candidate.exists():
            raise FileNotFoundError(f"Input file not found: {candidate}")
        return candidate

    for candidate in defaults:
        if candidate.exists():
            return candidate

    searched = "\n".join(f"- {p}" for p in defaults)
    raise FileNotFoundError(
        f"No {label} export found. Provide --{label}s or place the file at one of:\n" + searched
    )


def _find_column(columns: list[str], exact: str, fallback_patterns: list[str]) -> str:
    if exact in columns:
        return exact

    lowered = {c: str(c).lower() for c in columns}
    for pattern in fallback_patterns:
        pat = pattern.lower()
        for col in columns:
            if pat in lowered[col]:
                return col

    raise KeyError(
        f"Could not resolve required column. exact='{exact}', fallback_patterns={fallback_patterns}"
    )


def _find_optional_column(columns: list[str], exact: str, fallback_patterns: list[str]) -> str | None:
    try:
        return _find_column(columns, exact, fallback_patterns)
    except KeyError:
        return None


def _read_export(path: Path, sheet_name: str | int | None = None) -> pd.DataFrame:
    if not path.exists():
        raise FileNotFoundError(f"Input file not found: {path}")
    suffix = path.suffix.lower()
    if suffix in {".xlsx", ".xls"}:
        return pd.read_excel(path, sheet_name=0 if sheet_name is None else sheet_name)
    if suffix == ".csv":
        return pd.read_csv(path)
    raise ValueError(f"Unsupported export format '{suffix}' for {path}; expected .xlsx, .xls or .csv")


def _coerce_numeric(
    series: pd.Series, semantic_type: str, user_missing: frozenset[int]
) -> tuple[pd.Series, int, int]:
    numeric = pd.to_numeric(series, errors="coerce")
    present = series.notna() & (series.astype("string").str.strip() != "")
    unparseable = int((present & numeric.isna()).sum())
    is_user_missing = numeric.isin(list(user_missing))
    numeric = numeric.mask(is_user_missing)
    if semantic_type == "integer":
        non_whole = numeric.notna() & (numeric % 1 != 0)
        if non_whole.any():
            raise ValueError(
                f"Column '{series.name}' is declared integer but holds fractional values: "
                f"{numeric[non_whole].head(5).tolist()}"
            )
        return numeric.astype("Int64"), int(is_user_missing.sum()), unparseable
    return numeric.astype("Float64"), int(is_user_missing.sum()), unparseable


def apply_schema(
    raw: pd.DataFrame,
    schema: dict[str, ColumnSpec],
    table_name: str,
    user_missing: frozenset[int] = USER_MISSING_CODES,
) -> tuple[pd.DataFrame, dict[str, Any]]:
    columns = [str(c) for c in raw.columns]
    raw = raw.set_axis(columns, axis=1)
    typed: dict[str, pd.Series] = {}
    missing_report: dict[str, dict[str, int]] = {}
    unresolved_optional: list[str] = []

    for name, spec in schema.items():
        if spec.semantic_type not in SEMANTIC_TYPES:
            raise ValueError(f"Unknown semantic type '{spec.semantic_type}' for {table_name}.{name}")
        exact = spec.export_name or name
        patterns = [name, *spec.fallback_patterns]
        if spec.required:
            try:
                source = _find_column(columns, exact, patterns)
            except KeyError as exc:
                raise KeyError(f"{table_name} table: required column '{name}' not found. {exc.args[0]}") from exc
        else:
            source = _find_optional_column(columns, exact, patterns)
            if source is None:
                unresolved_optional.append(name)
                continue

        values = raw[source]
        system_missing = int(values.isna().sum())
        user_missing_count = 0
        unparseable = 0
        if spec.semantic_type == "identifier":
            clean = _normalize_identifier(values)
        elif spec.semantic_type == "category":
            clean = _normalize_label(values)
            is_user_missing = clean.isin([str(code) for code in user_missing]).fillna(False).astype(bool)
            user_missing_count = int(is_user_missing.sum())
            clean = clean.mask(is_user_missing, pd.NA)
        else:
            clean, user_missing_count, unparseable = _coerce_numeric(values, spec.semantic_type, user_missing)
        typed[name] = clean.rename(name)
        missing_report[name] = {
            "source_column": source,
            "system_missing": system_missing,
            "user_missing": user_missing_count,
            "unparseable": unparseable,
        }

    table = pd.DataFrame(typed, index=raw.index).reset_index(drop=True)
    report = {
        "rows": len(table),
        "columns": list(table.columns),
        "missing": missing_report,
        "optional_not_found": unresolved_optional,
    }
    return table, report


def load_table(
    path: str | Path,
    schema: dict[str, ColumnSpec],
    table_name: str,
    sheet_name: str | int | None = None,
    user_missing: frozenset[int] = USER_MISSING_CODES,
) -> tuple[pd.DataFrame, dict[str, Any]]:
    raw = _read_export(Path(path), sheet_name=sheet_name)
    table, report = apply_schema(raw, schema, table_name, user_missing=user_missing)
    report["path"] = str(path)
    return table, report


def load_survey_tables(
    household_path: str | Path,
    individual_path: str | Path,
    household_sheet: str | int | None = None,
    individual_sheet: str | int | None = None,
    user_missing: frozenset[int] = USER_MISSING_CODES,
) -> tuple[pd.DataFrame, pd.DataFrame, dict[str, Any]]:
    households, hh_report = load_table(
        household_path, HOUSEHOLD_SCHEMA, "household", sheet_name=household_sheet, user_missing=user_missing
    )
    individuals, ind_report = load_table(
        individual_path, INDIVIDUAL_SCHEMA, "individual", sheet_name=individual_sheet, user_missing=user_missing
    )
    return households, individuals, {"household": hh_report, "individual": ind_report}


def join_individuals_to_households(
    households: pd.DataFrame,
    individuals: pd.DataFrame,
    key: str = JOIN_KEY,
) -> tuple[pd.DataFrame, dict[str, Any]]:
    if key not in households.columns:
        raise KeyError(f"Join key '{key}' missing from household table")
    if key not in individuals.columns:
        raise KeyError(f"Join key '{key}' missing from individual table")

    hh_keys = households[key]
    duplicated = hh_keys[hh_keys.duplicated(keep=False) & hh_keys.notna()]
    if not duplicated.empty:
        sample = duplicated.drop_duplicates().head(10).tolist()
        raise ValueError(
            f"Join key '{key}' is not unique in the household table: "
            f"{duplicated.nunique()} duplicated ids, sample={sample}"
        )

    # pandas matches null keys to each other; a household without an id can never own members.
    keyed = households[hh_keys.notna()]

    joined = individuals.merge(
        keyed,
        on=key,
        how="left",
        suffixes=("", "_hh"),
        validate="many_to_one",
        indicator="_match",
    )
    if len(joined) != len(individuals):
        raise RuntimeError(
            f"Join changed individual cardinality: {len(individuals)} -> {len(joined)} rows"
        )

    left_only = joined["_match"] == "left_only"
    unmatched = joined.loc[left_only, key].dropna().unique().tolist()
    member_ids = set(individuals[key].dropna().tolist())
    memberless = [k for k in keyed[key].tolist() if k not in member_ids]
    joined = joined.drop(columns="_match")

    report = {
        "household_rows": len(households),
        "households_missing_key": int(len(households) - len(keyed)),
        "individual_rows": len(individuals),
        "joined_rows": len(joined),
        "unmatched_individuals": int(left_only.sum()),
        "unmatched_id_sample": unmatched[:10],
        "households_without_members": len(memberless),
        "memberless_id_sample": memberless[:10],
    }
    return joined, report


def _write_tables(tables: dict[str, pd.DataFrame], table_dir: Path) -> list[str]:
    table_dir.mkdir(parents=True, exist_ok=True)
    written: list[str] = []
    for name, table in tables.items():
        path = table_dir / f"{name}.csv"
        table.to_csv(path, index=False)
        written.append(str(path))

    workbook = table_dir / WORKBOOK_NAME
    with pd.ExcelWriter(workbook, engine="openpyxl") as writer:
        for name, table in tables.items():
            table.to_excel(writer, sheet_name=name[:31], index=False)
    written.append(str(workbook))
    return written


def load_prepared_tables(base_dir: str | Path = TABLE_DIR) -> dict[str, pd.DataFrame]:
    table_path = Path(base_dir)
    csv_files = sorted(table_path.glob("*.csv"))
    if not csv_files:
        raise FileNotFoundError(f"No prepared summary tables found in {table_path}")

    tables: dict[str, pd.DataFrame] = {}
    for csv_file in csv_files:
        table = pd.read_csv(csv_file, dtype="string", keep_default_na=False, na_values=[""])
        for col in SUMMARY_NUMERIC_COLUMNS:
            if col in table.columns:
                table[col] = pd.to_numeric(table[col], errors="coerce")
        for col in SUMMARY_CATEGORY_COLUMNS:
            if col in table.columns:
                categories = list(CATEGORY_ORDERS[col])
                if (table[col] == TOTAL_LABEL).any():
                    categories.append(TOTAL_LABEL)
                table[col] = pd.Categorical(table[col], categories=categories, ordered=True)
        tables[csv_file.stem] = table
    return tables


def build_outputs(
    household_path: str | Path,
    individual_path: str | Path,
    out_dir: str | Path = OUTPUT_DIR,
    household_sheet: str | int | None = None,
    individual_sheet: str | int | None = None,
    export_charts: bool = False,
) -> dict[str, Any]:
    households, individuals, load_report = load_survey_tables(
        household_path,
        individual_path,
        household_sheet=household_sheet,
        individual_sheet=individual_sheet,
    )
    joined, join_report = join_individuals_to_households(households, individuals)
    derived = derive_columns(joined)
    range_report = out_of_range_report(derived)
    tables = build_summaries(derived)

    out_root = Path(out_dir)
    chart_paths: list[str] = []
    with tempfile.TemporaryDirectory() as staging:
        # PNGs render first so an export failure leaves out_dir untouched.
        staged_charts: list[str] = []
        if export_charts:
            figures = build_figures(tables)
            staged_charts = export_png_pack(figures, out_dir=staging)
        written_tables = _write_tables(tables, out_root / "tables")
        if staged_charts:
            chart_dir = out_root / "charts"
            chart_dir.mkdir(parents=True, exist_ok=True)
            for staged in staged_charts:
                target = chart_dir / Path(staged).name
                shutil.move(staged, target)
                chart_paths.append(str(target))

    logs = {
        "load": load_report,
        "join": join_report,
        "out_of_range": range_report,
        "individuals": len(derived),
        "households": join_report["household_rows"]
        - join_report["households_missing_key"]
        - join_report["households_without_members"],
        "output_tables": written_tables,
        "output_charts": chart_paths,
    }
    return {"tables": tables, "derived": derived, "logs": logs}


def _print_acceptance_logs(logs: dict[str, Any]) -> None:
    for table_name, report in logs["load"].items():
        print(f"Loaded {table_name} table: {report['rows']} rows from {report['path']}")
        for col, counts in report["missing"].items():
            if counts["system_missing"] or counts["user_missing"] or counts["unparseable"]:
                print(
                    "- {col}: system_missing={system_missing}, user_missing={user_missing}, "
                    "unparseable={unparseable}".format(
                        col=col, **counts
                    )
                )
        if report["optional_not_found"]:
            print(f"- optional columns not found: {report['optional_not_found']}")

    join = logs["join"]
    print(
        "Joined individuals onto households: rows={individual_rows}->{joined_rows}, "
        "households={household_rows}".format(**join)
    )
    print(f"Individuals without a household record: {join['unmatched_individuals']}")
    if join["unmatched_individuals"] > 0:
        print(f"Sample unmatched interview ids: {join['unmatched_id_sample']}")
    print(f"Households without individual records (dropped): {join['households_without_members']}")
    if join["households_without_members"] > 0:
        print(f"Sample memberless interview ids: {join['memberless_id_sample']}")

    print("Values outside recode ranges (kept as missing category):")
    for col, report in logs["out_of_range"].items():
        print(f"- {col} (from {report['source']}): {report['out_of_range']} of {report['rows_with_input']}")

    print("Written tables:")
    for path in logs["output_tables"]:
        print(f"- {path}")

    if logs["output_charts"]:
        print("Written charts:")
        for path in logs["output_charts"]:
            print(f"- {path}")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Household and individual survey profile pipeline")
    parser.add_argument("--households", type=str, default=None, help="Path to household export (.xlsx/.csv)")
    parser.add_argument("--individuals", type=str, default=None, help="Path to individual export (.xlsx/.csv)")
    parser.add_argument("--household-sheet", type=str, default=None, help="Sheet name in the household workbook")
    parser.add_argument("--individual-sheet", type=str, default=None, help="Sheet name in the individual workbook")
    parser.add_argument("--out-dir", type=str, default=str(OUTPUT_DIR), help="Directory for tables and charts")
    parser.add_argument("--export-charts", action="store_true", help="Export PNG chart pack")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    household_path = _resolve_input_path(args.households, DEFAULT_HOUSEHOLD_PATHS, "household")
    individual_path = _resolve_input_path(args.individuals, DEFAULT_INDIVIDUAL_PATHS, "individual")
    result = build_outputs(
        household_path,
        individual_path,
        out_dir=args.out_dir,
        household_sheet=args.household_sheet,
        individual_sheet=args.individual_sheet,
        export_charts=args.export_charts,
    )
    _print_acceptance_logs(result["logs"])


if __name__ == "__main__":
    main()
