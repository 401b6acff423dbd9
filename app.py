from __future__ import annotations

import tempfile
from pathlib import Path

import pandas as pd
import streamlit as st

from charts import DEFAULT_THEME, build_figures, export_png_pack
from pipeline import TABLE_DIR, WORKBOOK_NAME, build_outputs, load_prepared_tables
from summaries import TOTAL_LABEL

st.set_page_config(page_title="Household Survey Profile", layout="wide")
st.title("Household and Individual Survey Profile")

if "tables" not in st.session_state:
    st.session_state["tables"] = None


@st.cache_data(show_spinner=False)
def _load_tables_cached() -> dict[str, pd.DataFrame]:
    return load_prepared_tables()


def _total_row(table: pd.DataFrame | None, label_col: str) -> pd.Series | None:
    if table is None or table.empty:
        return None
    rows = table[table[label_col].astype("object") == TOTAL_LABEL]
    return rows.iloc[0] if not rows.empty else None


def _compute_kpis(tables: dict[str, pd.DataFrame]) -> dict[str, str]:
    pyramid = tables.get("population_pyramid")
    households = _total_row(tables.get("household_size"), "HhSizeCategory")
    wasting = tables.get("wasting")
    wasting_total = _total_row(wasting, "NutritionStatus")

    gam = "n/a"
    if wasting is not None and wasting_total is not None and int(wasting_total["Children"]) > 0:
        acute = wasting[wasting["NutritionStatus"].astype("object").isin(["Moderate wasting", "Severe wasting"])]
        gam = f"{acute['Children'].sum() / int(wasting_total['Children']) * 100:.1f}%"

    return {
        "individuals": f"{int(pyramid['AbsPersons'].sum()):,}" if pyramid is not None else "n/a",
        "households": f"{int(households['Households']):,}" if households is not None else "n/a",
        "measured": f"{int(wasting_total['Children']):,}" if wasting_total is not None else "n/a",
        "gam": gam,
    }


def _write_upload(uploaded, tmp_dir: Path, prefix: str) -> Path:
    path = tmp_dir / f"{prefix}_{uploaded.name}"
    path.write_bytes(uploaded.getbuffer())
    return path


st.sidebar.header("Data")
source_mode = st.sidebar.radio(
    "Source",
    ["Prepared outputs", "Upload exports and rebuild outputs"],
    index=0,
)

if source_mode == "Prepared outputs":
    if st.sidebar.button("Load prepared outputs"):
        try:
            st.session_state["tables"] = _load_tables_cached()
            st.sidebar.success("Prepared outputs loaded.")
        except (FileNotFoundError, KeyError, ValueError) as exc:
            st.sidebar.error(f"Failed to load prepared outputs: {exc}")
else:
    household_upload = st.sidebar.file_uploader("Household export", type=["xlsx", "csv"])
    individual_upload = st.sidebar.file_uploader("Individual export", type=["xlsx", "csv"])
    if st.sidebar.button("Process uploaded exports"):
        if household_upload is None or individual_upload is None:
            st.sidebar.warning("Please upload both the household and the individual export first.")
        else:
            try:
                with tempfile.TemporaryDirectory() as tmp:
                    tmp_dir = Path(tmp)
                    household_path = _write_upload(household_upload, tmp_dir, "household")
                    individual_path = _write_upload(individual_upload, tmp_dir, "individual")
                    result = build_outputs(household_path, individual_path)
                st.session_state["tables"] = result["tables"]
                _load_tables_cached.clear()
                join = result["logs"]["join"]
                st.sidebar.success("Exports processed and outputs updated.")
                st.sidebar.info(
                    f"Individuals: {join['joined_rows']} | without household: {join['unmatched_individuals']} | "
                    f"households without members: {join['households_without_members']}"
                )
            except (FileNotFoundError, KeyError, ValueError, RuntimeError) as exc:
                st.sidebar.error(f"Processing failed: {exc}")

if st.session_state["tables"] is None:
    try:
        st.session_state["tables"] = _load_tables_cached()
        st.caption("Loaded prepared outputs from outputs/tables/.")
    except FileNotFoundError:
        st.warning(
            "No prepared outputs found. Run `python pipeline.py` first or upload the exports in the sidebar."
        )
        st.stop()

tables: dict[str, pd.DataFrame] = st.session_state["tables"]

kpis = _compute_kpis(tables)
col1, col2, col3, col4 = st.columns(4)
col1.metric("Individuals", kpis["individuals"])
col2.metric("Households", kpis["households"])
col3.metric("Children measured (WFHZ)", kpis["measured"])
col4.metric("Global acute malnutrition", kpis["gam"])

figures = build_figures(tables, theme=DEFAULT_THEME)

st.subheader("Households")
col_left, col_right = st.columns(2)
with col_left:
    st.plotly_chart(figures["01_household_size"], use_container_width=True)
with col_right:
    st.plotly_chart(figures["07_household_composition"], use_container_width=True)

st.subheader("Population")
st.plotly_chart(figures["02_population_pyramid"], use_container_width=True)
st.plotly_chart(figures["03_child_age_sex"], use_container_width=True)

st.subheader("Nutrition")
col_left, col_right = st.columns(2)
with col_left:
    st.plotly_chart(figures["04_wasting_prevalence"], use_container_width=True)
with col_right:
    st.plotly_chart(figures["05_wasting_by_sex"], use_container_width=True)

if "06_consent_by_sex" in figures:
    st.plotly_chart(figures["06_consent_by_sex"], use_container_width=True)

st.subheader("Summary tables")
table_name = st.selectbox("Table", sorted(tables))
st.dataframe(tables[table_name], use_container_width=True)

if st.button("Export PNG pack"):
    try:
        paths = export_png_pack(figures, out_dir="outputs/charts")
        st.success(f"Exported {len(paths)} PNG charts to outputs/charts/")
        if paths:
            st.caption("\n".join(paths))
    except RuntimeError as exc:
        st.error(f"{exc} Details: {exc.__cause__}")

workbook = TABLE_DIR / WORKBOOK_NAME
if workbook.exists():
    with workbook.open("rb") as fh:
        st.download_button(
            "Download summary workbook",
            data=fh.read(),
            file_name=workbook.name,
            mime="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        )
