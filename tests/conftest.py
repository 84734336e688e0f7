import matplotlib

matplotlib.use("Agg")

import numpy as np
import pandas as pd
import pytest

import diabetes_pipeline as dp


def make_pima_frame(n: int = 200, seed: int = 0, zero_rows: int = 6) -> pd.DataFrame:
    """Synthetic table with the Pima schema and a noisy glucose/BMI signal."""
    rng = np.random.default_rng(seed)
    glucose = np.clip(rng.normal(120, 30, n), 50, 199).round()
    bmi = np.clip(rng.normal(32, 7, n), 18, 60).round(1)
    logit = 0.05 * (glucose - 120) + 0.1 * (bmi - 32) + rng.normal(0, 1.0, n)

    df = pd.DataFrame({
        "Pregnancies":              rng.integers(0, 12, n),
        "Glucose":                  glucose,
        "BloodPressure":            np.clip(rng.normal(70, 12, n), 30, 120).round(),
        "SkinThickness":            rng.integers(0, 50, n),
        "Insulin":                  np.where(rng.random(n) < 0.4, 0, rng.integers(15, 400, n)),
        "BMI":                      bmi,
        "DiabetesPedigreeFunction": rng.uniform(0.08, 2.4, n).round(3),
        "Age":                      rng.integers(21, 75, n),
        "Outcome":                  (logit > 0).astype(int),
    })
    # sentinel zeros spread over the three row-filtered columns
    for i in range(zero_rows):
        df.loc[i * 7, ["Glucose", "BloodPressure", "BMI"][i % 3]] = 0
    return df[dp.COLUMN_NAMES]


@pytest.fixture
def raw_df() -> pd.DataFrame:
    return make_pima_frame()


@pytest.fixture
def clean_df(raw_df) -> pd.DataFrame:
    return dp.clean_data(raw_df)


@pytest.fixture
def csv_path(tmp_path, raw_df):
    path = tmp_path / "diabetes.csv"
    raw_df.to_csv(path, index=False)
    return path


@pytest.fixture
def prepared(clean_df) -> dict:
    train_df, test_df = dp.split_data(clean_df, rng=np.random.default_rng(1))
    return dp.prepare_features(train_df, test_df)
