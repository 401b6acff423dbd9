"""Tests for the row-wise recode rules and derive_columns."""

import math

import pandas as pd
import pytest

from recode import (
    AGE_GROUP_ORDER,
    CHILD_AGE_ORDER,
    HH_SIZE_ORDER,
    SEX_ORDER,
    WASTING_ORDER,
    age_group,
    child_age_group,
    derive_columns,
    household_size_category,
    out_of_range_report,
    sex_label,
    wasting_status,
)


class TestHouseholdSizeCategory:
    @pytest.mark.parametrize(
        "size, expected",
        [(0, "1-4"), (1, "1-4"), (4, "1-4"), (5, "5-6"), (6, "5-6"), (7, "7-9"), (9, "7-9"), (10, ">=10"), (31, ">=10")],
    )
    def test_boundaries(self, size, expected):
        assert household_size_category(size) == expected

    def test_every_non_negative_integer_gets_exactly_one_category(self):
        for size in range(0, 250):
            assert household_size_category(size) in HH_SIZE_ORDER

    @pytest.mark.parametrize("value", [None, pd.NA, math.nan, -1, "not a number"])
    def test_missing_or_invalid_is_missing_category(self, value):
        assert household_size_category(value) is None


class TestAgeGroup:
    @pytest.mark.parametrize(
        "age, expected",
        [(0, "0-4"), (4, "0-4"), (4.99, "0-4"), (5, "5-9"), (37, "35-39"), (94, "90-94"), (95, "95+"), (110, "95+")],
    )
    def test_half_open_bins(self, age, expected):
        assert age_group(age) == expected

    def test_label_set(self):
        assert AGE_GROUP_ORDER[0] == "0-4"
        assert AGE_GROUP_ORDER[-2:] == ["90-94", "95+"]
        assert len(AGE_GROUP_ORDER) == 20

    @pytest.mark.parametrize("value", [None, pd.NA, -0.5])
    def test_missing(self, value):
        assert age_group(value) is None


class TestChildAgeGroup:
    @pytest.mark.parametrize(
        "months, expected",
        [(0, "0-5"), (5.9, "0-5"), (6, "6-11"), (11, "6-11"), (12, "12-23"), (23, "12-23"), (24, "24-35"), (47, "36-47"), (59, "48-59")],
    )
    def test_bins(self, months, expected):
        assert child_age_group(months) == expected

    @pytest.mark.parametrize("value", [60, 72, -1, None, pd.NA])
    def test_outside_bins_is_missing(self, value):
        assert child_age_group(value) is None

    def test_label_set_is_display_ordered(self):
        assert CHILD_AGE_ORDER == ["0-5", "6-11", "12-23", "24-35", "36-47", "48-59"]


class TestSexLabel:
    def test_code_one_is_male(self):
        assert sex_label(1) == "Male"
        assert sex_label(1.0) == "Male"

    @pytest.mark.parametrize("code", [2, 0, 9])
    def test_other_codes_are_female(self, code):
        assert sex_label(code) == "Female"

    @pytest.mark.parametrize("code", [None, pd.NA, math.nan])
    def test_null_stays_null(self, code):
        assert sex_label(code) is None


class TestWastingStatus:
    @pytest.mark.parametrize(
        "zscore, expected",
        [
            (0.4, "No wasting"),
            (-2.0, "No wasting"),
            (-2.5, "Moderate wasting"),
            (-2.99, "Moderate wasting"),
            (-3.0, "Severe wasting"),
            (-4.2, "Severe wasting"),
        ],
    )
    def test_classification(self, zscore, expected):
        assert wasting_status(zscore) == expected

    @pytest.mark.parametrize("zscore", [None, pd.NA, math.nan])
    def test_null_is_excluded(self, zscore):
        assert wasting_status(zscore) is None


def test_derive_columns_returns_new_table(individuals):
    original = individuals.copy()
    derived = derive_columns(individuals)

    pd.testing.assert_frame_equal(individuals, original)
    assert "AgeGroup" not in individuals.columns
    assert {"AgeGroup", "ChildAgeGroup", "Sex", "NutritionStatus"}.issubset(derived.columns)
    # hh_size is not in the individual table, so no size category is derived.
    assert "HhSizeCategory" not in derived.columns


def test_derived_columns_keep_display_order(derived):
    expected = {
        "HhSizeCategory": HH_SIZE_ORDER,
        "AgeGroup": AGE_GROUP_ORDER,
        "ChildAgeGroup": CHILD_AGE_ORDER,
        "Sex": SEX_ORDER,
        "NutritionStatus": WASTING_ORDER,
    }
    for column, order in expected.items():
        assert derived[column].cat.ordered
        assert list(derived[column].cat.categories) == order


def test_derive_columns_is_idempotent(derived):
    again = derive_columns(derived)
    for column in ["HhSizeCategory", "AgeGroup", "ChildAgeGroup", "Sex", "NutritionStatus"]:
        pd.testing.assert_series_equal(again[column], derived[column])


def test_derived_values(derived):
    assert derived["AgeGroup"].tolist() == ["30-34", "0-4", "95+", "0-4", "0-4"]
    assert derived["Sex"].tolist() == ["Male", "Female", "Male", "Male", "Female"]
    assert derived["HhSizeCategory"].tolist() == ["1-4", "1-4", ">=10", ">=10", "1-4"]


def test_null_sex_code_is_not_recoded_to_female():
    table = pd.DataFrame({"sex": pd.array([1, None, 2], dtype="Int64")})
    derived = derive_columns(table)
    assert derived["Sex"].iloc[0] == "Male"
    assert pd.isna(derived["Sex"].iloc[1])
    assert derived["Sex"].iloc[2] == "Female"


def test_out_of_range_report_counts_unbucketed_inputs():
    table = derive_columns(
        pd.DataFrame(
            {
                "age_months": pd.array([10.0, 70.0, None], dtype="Float64"),
                "hh_size": pd.array([3, -2, 5], dtype="Int64"),
            }
        )
    )
    report = out_of_range_report(table)

    assert report["ChildAgeGroup"]["rows_with_input"] == 2
    assert report["ChildAgeGroup"]["out_of_range"] == 1
    assert report["ChildAgeGroup"]["out_of_range_sample"] == [70.0]
    assert report["HhSizeCategory"]["out_of_range"] == 1
