"""Tests for figure construction from summary tables."""

import plotly.io as pio
import pytest

from charts import DEFAULT_THEME, ChartTheme, PNG_ORDER, build_figures, pyramid_ticks
from summaries import build_summaries


@pytest.fixture
def summaries(derived):
    return build_summaries(derived)


def test_all_figures_built(summaries):
    figures = build_figures(summaries)
    assert list(figures) == PNG_ORDER


def test_pyramid_bars_mirror_male_counts(summaries):
    fig = build_figures(summaries)["02_population_pyramid"]
    traces = {trace.name: trace for trace in fig.data}

    assert set(traces) == {"Male", "Female"}
    assert all(x < 0 for x in traces["Male"].x)
    assert all(x > 0 for x in traces["Female"].x)
    assert fig.layout.barmode == "relative"
    assert all(not label.startswith("-") for label in fig.layout.xaxis.ticktext)


def test_pyramid_ticks_show_magnitudes():
    values, labels = pyramid_ticks(3)
    assert values == [-3, -2, -1, 0, 1, 2, 3]
    assert labels == ["3", "2", "1", "0", "1", "2", "3"]


def test_percentage_labels_come_from_summary(summaries):
    fig = build_figures(summaries)["01_household_size"]
    assert list(fig.data[0].text) == ["50.0%", "50.0%"]


def test_empty_summary_renders_placeholder(summaries):
    summaries["wasting"] = summaries["wasting"].iloc[0:0]
    fig = build_figures(summaries)["04_wasting_prevalence"]

    assert fig.layout.annotations[0].text == "No data available"


def test_consent_figure_skipped_without_table(summaries):
    summaries.pop("consent_by_sex")
    assert "06_consent_by_sex" not in build_figures(summaries)


def test_theme_is_passed_not_installed_globally(summaries):
    before = pio.templates.default
    theme = ChartTheme(background="#000000")

    fig = build_figures(summaries, theme=theme)["01_household_size"]

    assert pio.templates.default == before
    assert fig.layout.template.layout.paper_bgcolor == "#000000"
    assert DEFAULT_THEME.background != "#000000"


def test_theme_is_immutable():
    with pytest.raises(AttributeError):
        DEFAULT_THEME.background = "#FFFFFF"
    with pytest.raises(TypeError):
        DEFAULT_THEME.sex_colors["Male"] = "#000000"
