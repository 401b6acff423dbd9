from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Mapping

import pandas as pd
import plotly.express as px
import plotly.graph_objects as go

from recode import CATEGORY_ORDERS, SEX_ORDER, WASTING_ORDER
from summaries import TOTAL_LABEL

PNG_ORDER = [
    "01_household_size",
    "02_population_pyramid",
    "03_child_age_sex",
    "04_wasting_prevalence",
    "05_wasting_by_sex",
    "06_consent_by_sex",
    "07_household_composition",
]

PALETTE = MappingProxyType(
    {
        "teal": "#00798C",
        "navy": "#1D3557",
        "sky": "#4EA8DE",
        "coral": "#E76F51",
        "sand": "#E9C46A",
        "green": "#2A9D8F",
        "amber": "#F4A261",
        "red": "#C0392B",
        "slate": "#505759",
        "light_grey": "#919D9D",
        "bg": "#F7F9FB",
        "grid": "#E6E9EF",
    }
)


@dataclass(frozen=True)
class ChartTheme:
    background: str = PALETTE["bg"]
    grid: str = PALETTE["grid"]
    text: str = PALETTE["slate"]
    font_family: str = "Arial"
    primary: str = PALETTE["teal"]
    secondary: str = PALETTE["navy"]
    colorway: tuple[str, ...] = (
        PALETTE["teal"],
        PALETTE["navy"],
        PALETTE["sky"],
        PALETTE["coral"],
        PALETTE["sand"],
    )
    sex_colors: Mapping[str, str] = field(
        default_factory=lambda: MappingProxyType({"Male": PALETTE["navy"], "Female": PALETTE["coral"]})
    )
    wasting_colors: Mapping[str, str] = field(
        default_factory=lambda: MappingProxyType(
            {
                "No wasting": PALETTE["green"],
                "Moderate wasting": PALETTE["amber"],
                "Severe wasting": PALETTE["red"],
            }
        )
    )

    def template(self) -> go.layout.Template:
        axis = dict(showgrid=True, gridcolor=self.grid, zeroline=False, linecolor=self.grid)
        return go.layout.Template(
            layout=go.Layout(
                paper_bgcolor=self.background,
                plot_bgcolor=self.background,
                colorway=list(self.colorway),
                font=dict(family=self.font_family, color=self.text),
                margin=dict(l=40, r=20, t=55, b=40),
                title=dict(x=0.02, xanchor="left"),
                xaxis=axis,
                yaxis=axis,
                legend=dict(bgcolor="rgba(255,255,255,0.6)", borderwidth=0),
            )
        )


DEFAULT_THEME = ChartTheme()


def _empty_figure(title: str, theme: ChartTheme) -> go.Figure:
    fig = go.Figure()
    fig.add_annotation(
        text="No data available",
        showarrow=False,
        x=0.5,
        y=0.5,
        font=dict(color=theme.text),
    )
    fig.update_layout(
        title=title,
        xaxis_visible=False,
        yaxis_visible=False,
        template=theme.template(),
    )
    return fig


def _nice_integer_tick_values(max_value: int, max_ticks: int = 6) -> list[int]:
    if max_value <= 1:
        return [0, 1]
    if max_value <= max_ticks:
        return list(range(0, max_value + 1))

    raw_step = max_value / (max_ticks - 1)
    candidates = [1, 2, 5, 10, 20, 25, 50, 100, 200, 250, 500, 1000]
    step = candidates[-1]
    for c in candidates:
        if c >= raw_step:
            step = c
            break
    vals = list(range(0, max_value + step, step))
    return sorted(set(vals))


def pyramid_ticks(max_magnitude: int) -> tuple[list[int], list[str]]:
    positive = _nice_integer_tick_values(max_magnitude)
    values = sorted({-v for v in positive} | set(positive))
    return values, [str(abs(v)) for v in values]


def _plot_frame(table: pd.DataFrame, category_cols: list[str]) -> pd.DataFrame:
    out = table.copy()
    first = category_cols[0]
    out = out[out[first].astype("object") != TOTAL_LABEL]
    for col in category_cols:
        out[col] = out[col].astype("object").astype(str)
    return out


def _usable(tables: dict[str, pd.DataFrame], name: str) -> bool:
    table = tables.get(name)
    return table is not None and not table.empty


def _household_size_figure(table: pd.DataFrame, theme: ChartTheme) -> go.Figure:
    frame = _plot_frame(table, ["HhSizeCategory"])
    fig = px.bar(
        frame,
        x="HhSizeCategory",
        y="Households",
        text="Share",
        title="Households by household size",
        labels={"HhSizeCategory": "Household size (members)", "Households": "Households"},
        category_orders={"HhSizeCategory": CATEGORY_ORDERS["HhSizeCategory"]},
        color_discrete_sequence=[theme.primary],
        template=theme.template(),
    )
    fig.update_traces(marker_line_width=0, textposition="outside", cliponaxis=False)
    fig.update_xaxes(type="category")
    return fig


def _pyramid_figure(table: pd.DataFrame, theme: ChartTheme) -> go.Figure:
    frame = _plot_frame(table, ["Sex", "AgeGroup"])
    fig = go.Figure()
    for sex in SEX_ORDER:
        part = frame[frame["Sex"] == sex]
        if part.empty:
            continue
        fig.add_trace(
            go.Bar(
                x=part["Persons"],
                y=part["AgeGroup"],
                orientation="h",
                name=sex,
                marker=dict(color=theme.sex_colors.get(sex, theme.primary), line=dict(width=0)),
                customdata=part["AbsPersons"],
                hovertemplate=f"{sex}<br>Age %{{y}}<br>Persons: %{{customdata}}<extra></extra>",
            )
        )
    tickvals, ticktext = pyramid_ticks(int(frame["AbsPersons"].max()) if not frame.empty else 1)
    fig.update_layout(
        title="Population pyramid by age group and sex",
        barmode="relative",
        bargap=0.08,
        template=theme.template(),
    )
    fig.update_xaxes(title="Persons", tickmode="array", tickvals=tickvals, ticktext=ticktext)
    fig.update_yaxes(
        title="Age group (years)",
        type="category",
        categoryorder="array",
        categoryarray=CATEGORY_ORDERS["AgeGroup"],
    )
    return fig


def _child_age_sex_figure(table: pd.DataFrame, theme: ChartTheme) -> go.Figure:
    frame = _plot_frame(table, ["ChildAgeGroup", "Sex"])
    fig = px.bar(
        frame,
        x="ChildAgeGroup",
        y="Children",
        color="Sex",
        barmode="group",
        text="Children",
        title="Children under five by age group and sex",
        labels={"ChildAgeGroup": "Age group (months)", "Children": "Children"},
        category_orders={"ChildAgeGroup": CATEGORY_ORDERS["ChildAgeGroup"], "Sex": SEX_ORDER},
        color_discrete_map=dict(theme.sex_colors),
        template=theme.template(),
    )
    fig.update_traces(marker_line_width=0, textposition="outside", cliponaxis=False)
    fig.update_xaxes(type="category")
    return fig


def _wasting_figure(table: pd.DataFrame, theme: ChartTheme) -> go.Figure:
    frame = _plot_frame(table, ["NutritionStatus"])
    fig = px.bar(
        frame,
        x="NutritionStatus",
        y="Children",
        color="NutritionStatus",
        text="Share",
        title="Acute malnutrition (weight-for-height z-score)",
        labels={"NutritionStatus": "Nutrition status", "Children": "Children measured"},
        category_orders={"NutritionStatus": WASTING_ORDER},
        color_discrete_map=dict(theme.wasting_colors),
        template=theme.template(),
    )
    fig.update_traces(marker_line_width=0, textposition="outside", cliponaxis=False)
    fig.update_layout(showlegend=False)
    fig.update_xaxes(type="category")
    return fig


def _wasting_by_sex_figure(table: pd.DataFrame, theme: ChartTheme) -> go.Figure:
    frame = _plot_frame(table, ["Sex", "NutritionStatus"])
    fig = px.bar(
        frame,
        x="Sex",
        y="Children",
        color="NutritionStatus",
        text="Share",
        title="Nutrition status by sex (share of measured children)",
        labels={"Sex": "Sex", "Children": "Share of measured children (%)", "NutritionStatus": "Nutrition status"},
        category_orders={"Sex": SEX_ORDER, "NutritionStatus": WASTING_ORDER},
        color_discrete_map=dict(theme.wasting_colors),
        template=theme.template(),
    )
    fig.update_traces(marker_line_width=0, textposition="inside")
    fig.update_layout(barmode="stack", barnorm="percent")
    fig.update_xaxes(type="category")
    return fig


def _consent_figure(table: pd.DataFrame, theme: ChartTheme) -> go.Figure:
    frame = _plot_frame(table, ["Sex"])
    fig = px.bar(
        frame,
        x="Sex",
        y="Consented",
        color="Sex",
        text="ConsentShare",
        title="Consent to measurement by sex",
        labels={"Sex": "Sex", "Consented": "Individuals consenting"},
        category_orders={"Sex": SEX_ORDER},
        color_discrete_map=dict(theme.sex_colors),
        custom_data=["Eligible"],
        template=theme.template(),
    )
    fig.update_traces(
        marker_line_width=0,
        textposition="outside",
        cliponaxis=False,
        hovertemplate="%{x}<br>Consented: %{y}<br>Asked: %{customdata[0]}<extra></extra>",
    )
    fig.update_layout(showlegend=False)
    return fig


def _composition_figure(table: pd.DataFrame, theme: ChartTheme) -> go.Figure:
    frame = _plot_frame(table, ["HhSizeCategory"])
    frame["MeanSize"] = pd.to_numeric(frame["MeanSize"], errors="coerce")
    frame["MeanSizeLabel"] = frame["MeanSize"].round(1)
    fig = px.bar(
        frame,
        x="HhSizeCategory",
        y="MeanSize",
        text="MeanSizeLabel",
        title="Mean household size by size category",
        labels={"HhSizeCategory": "Household size (members)", "MeanSize": "Mean members per household"},
        category_orders={"HhSizeCategory": CATEGORY_ORDERS["HhSizeCategory"]},
        color_discrete_sequence=[theme.secondary],
        template=theme.template(),
    )
    fig.update_traces(marker_line_width=0, textposition="outside", cliponaxis=False)
    fig.update_xaxes(type="category")
    return fig


FIGURE_BUILDERS = {
    "01_household_size": ("household_size", "Households by household size", _household_size_figure),
    "02_population_pyramid": ("population_pyramid", "Population pyramid", _pyramid_figure),
    "03_child_age_sex": ("child_age_sex", "Children under five by age group and sex", _child_age_sex_figure),
    "04_wasting_prevalence": ("wasting", "Acute malnutrition", _wasting_figure),
    "05_wasting_by_sex": ("wasting_by_sex", "Nutrition status by sex", _wasting_by_sex_figure),
    "06_consent_by_sex": ("consent_by_sex", "Consent to measurement by sex", _consent_figure),
    "07_household_composition": ("household_composition", "Mean household size", _composition_figure),
}


def build_figures(
    tables: dict[str, pd.DataFrame],
    theme: ChartTheme = DEFAULT_THEME,
) -> dict[str, go.Figure]:
    figures: dict[str, go.Figure] = {}
    for key, (table_name, empty_title, builder) in FIGURE_BUILDERS.items():
        if table_name == "consent_by_sex" and table_name not in tables:
            continue
        if _usable(tables, table_name):
            figures[key] = builder(tables[table_name], theme)
        else:
            figures[key] = _empty_figure(empty_title, theme)
    return figures


def export_png_pack(
    figures: dict[str, go.Figure],
    out_dir: str = "outputs/charts",
    width: int = 1600,
    height: int = 900,
    scale: int = 2,
) -> list[str]:
    output = Path(out_dir)
    output.mkdir(parents=True, exist_ok=True)

    written: list[str] = []
    try:
        for chart_name in PNG_ORDER:
            fig = figures.get(chart_name)
            if fig is None:
                continue
            path = output / f"{chart_name}.png"
            if chart_name == "02_population_pyramid":
                fig.write_image(path, width=width, height=int(height * 1.4), scale=scale)
            else:
                fig.write_image(path, width=width, height=height, scale=scale)
            written.append(str(path))
    except Exception as exc:  # pragma: no cover - environment dependent
        raise RuntimeError(
            "PNG export failed. Ensure kaleido is installed and Chrome is available for static image rendering."
        ) from exc

    return written

