import pandas as pd
import pytest

from pipeline import join_individuals_to_households
from recode import derive_columns


@pytest.fixture
def households() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "interview_id": pd.array(["A", "B"], dtype="string"),
            "hh_size": pd.array([4, 10], dtype="Int64"),
            "n_under5": pd.array([2, 1], dtype="Int64"),
        }
    )


@pytest.fixture
def individuals() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "interview_id": pd.array(["A", "A", "B", "B", "A"], dtype="string"),
            "age_years": pd.array([30.0, 2.0, 95.0, 1.0, 4.0], dtype="Float64"),
            "age_months": pd.array([None, 30.0, None, 14.0, 50.0], dtype="Float64"),
            "sex": pd.array([1, 2, 1, 1, 2], dtype="Int64"),
            "wfhz": pd.array([None, -2.5, None, -3.0, -1.0], dtype="Float64"),
            "consent": pd.array(["yes", "no", "yes", "yes", "yes"], dtype="string"),
        }
    )


@pytest.fixture
def derived(households, individuals) -> pd.DataFrame:
    joined, _ = join_individuals_to_households(households, individuals)
    return derive_columns(joined)


@pytest.fixture
def export_files(tmp_path):
    household_csv = tmp_path / "household.csv"
    individual_csv = tmp_path / "individual.csv"
    household_csv.write_text(
        "interview__id,hh_size,n_under5,region\n"
        "101,4,2,North\n"
        "102,10,-999999999,South\n"
        "103,6,,North\n"
    )
    individual_csv.write_text(
        "interview__id,person_id,age_years,age_months,sex,wfhz,consent\n"
        "101,1,30,,1,,yes\n"
        "101,2,2,30,2,-2.5,no\n"
        "102,1,95,,1,,Yes\n"
        "102,2,1,14,1,-3.0,yes\n"
        "101,3,4,50,2,-999999999,yes\n"
        "104,1,40,,2,,\n"
    )
    return household_csv, individual_csv
