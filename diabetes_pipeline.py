"""
diabetes_pipeline.py
====================
Pima Diabetes: Model Comparison Report
======================================

Standalone analysis script that cleans the Pima Indians Diabetes table,
splits it 70/30 with a seeded permutation and compares six classifiers
for the binary ``Outcome`` label:

    * k-nearest neighbours         (k chosen by leave-one-out CV)
    * logistic regression          (cutoff chosen on the FPR/FNR trade-off)
    * lasso logistic regression    (lambda chosen by k-fold CV)
    * ridge logistic regression    (lambda chosen by k-fold CV)
    * linear SVM                   (cost chosen by k-fold CV)
    * radial SVM                   (cost x gamma chosen by k-fold CV)

Dataset
-------
Pima Indians Diabetes dataset: 768 samples, 8 numerical medical features
plus the 0/1 ``Outcome`` column. Read from a local CSV with a header row,
or fetched from a public headerless mirror via `requests`.

Pipeline Stages
---------------
1. load_data()          → read + validate the raw table
2. clean_data(df)       → drop sparse columns, drop rows with sentinel zeros
3. split_data(df)       → seeded 70/30 permutation split
4. scale_features(...)  → standardise with training statistics only
5. ClassifierModel.fit  → KNN, logistic, lasso, ridge, SVM (linear, radial)
6. evaluate_model(...)  → confusion matrix (predicted x observed) + error
7. main()               → orchestrate all stages end-to-end

Usage
-----
    python diabetes_pipeline.py

Requirements
------------
    pip install scikit-learn statsmodels pandas numpy matplotlib requests
"""

from __future__ import annotations

import re
import sys
from abc import ABC, abstractmethod
from io import StringIO
from pathlib import Path

import requests
import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import statsmodels.api as sm
from pandas.plotting import scatter_matrix

from sklearn.linear_model import LogisticRegressionCV
from sklearn.model_selection import GridSearchCV, StratifiedKFold
from sklearn.neighbors import KNeighborsClassifier, NearestNeighbors
from sklearn.preprocessing import StandardScaler
from sklearn.svm import SVC
from sklearn.metrics import (
    precision_score,
    recall_score,
    f1_score,
    confusion_matrix,
    roc_curve,
    ConfusionMatrixDisplay,
)

# ── Global constants ─────────────────────────────────────────────────────────
DATASET_PATH = "diabetes.csv"
DATASET_URL = (
    "https://raw.githubusercontent.com/jbrownlee/Datasets/master/"
    "pima-indians-diabetes.data.csv"
)

COLUMN_NAMES: list[str] = [
    "Pregnancies", "Glucose", "BloodPressure", "SkinThickness",
    "Insulin", "BMI", "DiabetesPedigreeFunction", "Age", "Outcome",
]

TARGET_COL: str = "Outcome"

# More than 30% of these readings are zero: too sparse to impute
DROPPED_COLS: list[str] = ["SkinThickness", "Insulin"]

# Zero is physiologically impossible here; affected rows (<5%) are removed
ZERO_AS_MISSING_COLS: list[str] = ["Glucose", "BloodPressure", "BMI"]

# Feature columns fed to the models after cleaning
FEATURE_COLS: list[str] = [
    "Pregnancies", "Glucose", "BloodPressure",
    "BMI", "DiabetesPedigreeFunction", "Age",
]

RANDOM_STATE:   int = 1       # seed for the run's single RNG
TRAIN_FRACTION: float = 0.7   # 70 / 30 train-test split
CV_FOLDS:       int = 10      # folds for lasso / ridge / SVM tuning

KNN_K_VALUES = range(1, 101)

# Inverse penalty strengths (lambda = 1 / C), weakest penalty last
PENALTY_CS = np.logspace(-4, 4, 50)

LINEAR_SVM_GRID: dict = {"C": [0.001, 0.01, 0.1, 1, 5, 10, 100]}
RADIAL_SVM_GRID: dict = {
    "C":     [0.1, 1, 10, 100, 1000],
    "gamma": [0.5, 1, 2, 3, 4],
}

PLOT_DIR = "figures"


# ════════════════════════════════════════════════════════════════════════════
# Errors
# ════════════════════════════════════════════════════════════════════════════

class PipelineError(Exception):
    """Base class for every failure raised by this pipeline."""


class DataFormatError(PipelineError, ValueError):
    """Input table has the wrong columns, non-numeric cells or bad labels."""


class InsufficientClassDiversityError(PipelineError, ValueError):
    """A fitter was handed labels that do not contain both classes."""


class ZeroVarianceError(PipelineError, ZeroDivisionError):
    """A training column is constant, so it cannot be standardised."""


class EmptyPartitionError(PipelineError, ValueError):
    """The training partition has no rows to fit on."""


# ════════════════════════════════════════════════════════════════════════════
# Stage 1 - Data Acquisition
# ════════════════════════════════════════════════════════════════════════════

def _read_source(source: str | Path, has_header: bool) -> pd.DataFrame:
    header = 0 if has_header else None
    names = None if has_header else COLUMN_NAMES

    if str(source).startswith(("http://", "https://")):
        print(f"[load_data] Fetching dataset from:\n  {source}\n")
        response = requests.get(str(source), timeout=30)
        response.raise_for_status()
        return pd.read_csv(StringIO(response.text), header=header, names=names)

    print(f"[load_data] Reading dataset from {source}")
    return pd.read_csv(source, header=header, names=names)


def load_data(source: str | Path = DATASET_PATH, has_header: bool = True) -> pd.DataFrame:
    """
    Read the Pima table from a local CSV or a public URL and validate it.

    Steps
    -----
    - Read the file (local path via pandas, http(s) URL via `requests`)
    - Check the header names exactly the 9 expected columns
    - Coerce every cell to a number; empty cells are rejected
    - Check ``Outcome`` only holds 0 and 1

    Parameters
    ----------
    source : str or Path, default=DATASET_PATH
        Local file path or ``http(s)://`` URL.
    has_header : bool, default=True
        False for headerless files (the public mirror); COLUMN_NAMES are
        then assigned in order.

    Returns
    -------
    pd.DataFrame
        Columns in COLUMN_NAMES order, ``Outcome`` as int.

    Raises
    ------
    DataFormatError
        Wrong columns, non-numeric or missing values, labels outside {0, 1}.
    requests.HTTPError
        If the remote endpoint returns a non-2xx status code.
    """
    raw = _read_source(source, has_header)
    raw.columns = [str(c).strip() for c in raw.columns]

    found = list(raw.columns)
    if len(found) != len(COLUMN_NAMES) or set(found) != set(COLUMN_NAMES):
        raise DataFormatError(f"expected columns {COLUMN_NAMES}, got {found}")

    try:
        df = raw[COLUMN_NAMES].apply(pd.to_numeric)
    except (ValueError, TypeError) as exc:
        raise DataFormatError(f"non-numeric value in input: {exc}") from exc

    missing = df.columns[df.isna().any()].tolist()
    if missing:
        raise DataFormatError(f"missing values in columns {missing}")

    bad_labels = sorted(set(df[TARGET_COL].unique()) - {0, 1})
    if bad_labels:
        raise DataFormatError(f"{TARGET_COL} must be 0 or 1, found {bad_labels}")
    df[TARGET_COL] = df[TARGET_COL].astype(int)

    print(f"[load_data] Loaded {len(df)} samples, {df.shape[1]} columns.")
    print(f"  {TARGET_COL} distribution:\n{df[TARGET_COL].value_counts().to_string()}\n")
    return df


def summarize_zeros(df: pd.DataFrame) -> pd.DataFrame:
    """
    Count sentinel zeros per clinical column.

    This is the evidence behind the cleaning policy: SkinThickness and
    Insulin are zero in roughly 30-50% of rows and are dropped outright,
    while Glucose, BloodPressure and BMI are zero in under 5% of rows and
    only those rows are removed.

    Returns
    -------
    pd.DataFrame
        Indexed by column name, with ``zeros`` and ``fraction``.
    """
    cols = [c for c in ZERO_AS_MISSING_COLS + DROPPED_COLS if c in df.columns]
    zeros = (df[cols] == 0).sum()
    summary = pd.DataFrame({
        "zeros":    zeros,
        "fraction": zeros / max(len(df), 1),
    })
    print("[summarize_zeros] Sentinel zeros per column:")
    print(summary.round(3).to_string())
    print()
    return summary


# ════════════════════════════════════════════════════════════════════════════
# Stage 2 - Cleaning
# ════════════════════════════════════════════════════════════════════════════

def clean_data(df: pd.DataFrame) -> pd.DataFrame:
    """
    Drop the sparse columns, then rows with impossible zero readings.

    Steps
    -----
    1. Remove SkinThickness and Insulin unconditionally.
    2. Remove rows where Glucose, BloodPressure or BMI equals 0.

    The input frame is left untouched. An empty result is returned as is.

    Returns
    -------
    pd.DataFrame
        7 columns (6 predictors + Outcome), index reset.
    """
    # ── Step 1: Drop sparse columns ─────────────────────────────────────
    print(f"[clean_data] Step 1 - dropping columns {DROPPED_COLS}")
    df_clean = df.drop(columns=DROPPED_COLS)

    # ── Step 2: Drop rows with sentinel zeros ───────────────────────────
    print("[clean_data] Step 2 - dropping rows with sentinel zeros...")
    invalid = (df_clean[ZERO_AS_MISSING_COLS] == 0).any(axis=1)
    for col in ZERO_AS_MISSING_COLS:
        n = int((df_clean[col] == 0).sum())
        print(f"  {col:<30s}  {n:>3d} zeros")
    df_clean = df_clean.loc[~invalid].reset_index(drop=True)

    print(f"[clean_data] Complete - {len(df)} → {len(df_clean)} rows, "
          f"{df_clean.shape[1]} columns.\n")
    return df_clean


# ════════════════════════════════════════════════════════════════════════════
# Stage 3 - Split
# ════════════════════════════════════════════════════════════════════════════

def split_data(
    df: pd.DataFrame,
    train_fraction: float = TRAIN_FRACTION,
    rng: np.random.Generator | None = None,
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """
    Partition rows into train/test with a seeded random permutation.

    The first ``floor(train_fraction * n)`` permuted rows form the training
    set, the rest the test set. The same generator state and input always
    give the same partition.

    Parameters
    ----------
    df : pd.DataFrame
        Cleaned table from clean_data().
    train_fraction : float, default=0.7
    rng : np.random.Generator, optional
        Explicit generator; defaults to ``default_rng(RANDOM_STATE)``.

    Returns
    -------
    train_df, test_df : pd.DataFrame
        Disjoint row subsets keeping the original index labels.
    """
    if not 0.0 < train_fraction < 1.0:
        raise ValueError(f"train_fraction must lie in (0, 1), got {train_fraction}")
    rng = rng if rng is not None else np.random.default_rng(RANDOM_STATE)

    n = len(df)
    order = rng.permutation(n)
    # rounding guards against 0.7 * 20 landing on 13.999...
    n_train = int(np.floor(round(n * train_fraction, 9)))

    train_df = df.iloc[order[:n_train]]
    test_df = df.iloc[order[n_train:]]

    print(f"[split_data] Train : {len(train_df)} samples")
    print(f"[split_data] Test  : {len(test_df)} samples\n")
    return train_df, test_df


def xy(df: pd.DataFrame) -> tuple[pd.DataFrame, np.ndarray]:
    """Separate predictors from the integer label vector."""
    features = [c for c in df.columns if c != TARGET_COL]
    return df[features], df[TARGET_COL].to_numpy(dtype=int)


# ════════════════════════════════════════════════════════════════════════════
# Stage 4 - Feature Scaling
# ════════════════════════════════════════════════════════════════════════════

class FeatureScaler:
    """
    Standardise columns with statistics taken from the training matrix only.

    Wraps ``StandardScaler`` but refuses constant columns instead of
    silently leaving them unscaled.
    """

    def __init__(self) -> None:
        self.scaler = StandardScaler()
        self.columns: list[str] = []

    @property
    def mean_(self) -> np.ndarray:
        return self.scaler.mean_

    @property
    def scale_(self) -> np.ndarray:
        return self.scaler.scale_

    def fit(self, X: pd.DataFrame) -> "FeatureScaler":
        values = np.asarray(X, dtype=float)
        self.columns = _feature_names(X)

        if len(values) == 0:
            raise EmptyPartitionError("empty training partition; nothing to scale")

        self.scaler.fit(values)

        # StandardScaler leaves (near-)constant columns at scale_ == 1
        constant = (np.ptp(values, axis=0) == 0) | (
            (self.scaler.scale_ == 1.0) & ~np.isclose(self.scaler.var_, 1.0)
        )
        if constant.any():
            bad = [c for c, flag in zip(self.columns, constant) if flag]
            raise ZeroVarianceError(f"zero variance in training columns {bad}; cannot scale")
        return self

    def transform(self, X: pd.DataFrame) -> pd.DataFrame:
        scaled = self.scaler.transform(np.asarray(X, dtype=float))
        return pd.DataFrame(scaled, columns=self.columns, index=getattr(X, "index", None))


def scale_features(
    X_train: pd.DataFrame,
    X_test: pd.DataFrame,
) -> tuple[pd.DataFrame, pd.DataFrame, FeatureScaler]:
    """
    Fit a FeatureScaler on X_train and apply it to both matrices.

    Distance-based models (KNN, SVM) and the penalised fits need features
    on a common scale; without it Glucose (~40-200) dominates
    DiabetesPedigreeFunction (~0.1-2.4).

    Raises
    ------
    ZeroVarianceError
        If any training column is constant (or too close to constant for
        StandardScaler to divide by).
    EmptyPartitionError
        If X_train has no rows.
    """
    scaler = FeatureScaler().fit(X_train)
    X_train_scaled = scaler.transform(X_train)
    X_test_scaled = scaler.transform(X_test)
    print(f"[scale_features] Fitted on {len(X_train)} training rows; "
          f"applied to {len(X_test)} test rows.\n")
    return X_train_scaled, X_test_scaled, scaler


def prepare_features(train_df: pd.DataFrame, test_df: pd.DataFrame) -> dict:
    """
    Split predictors from labels and build the scaled copies.

    Returns
    -------
    dict
        'X_train', 'X_test'                 : raw predictor frames
        'X_train_scaled', 'X_test_scaled'   : standardised frames
        'y_train', 'y_test'                 : int label arrays
        'scaler'                            : fitted FeatureScaler
    """
    X_train, y_train = xy(train_df)
    X_test, y_test = xy(test_df)
    X_train_scaled, X_test_scaled, scaler = scale_features(X_train, X_test)
    return {
        "X_train"        : X_train,
        "X_test"         : X_test,
        "X_train_scaled" : X_train_scaled,
        "X_test_scaled"  : X_test_scaled,
        "y_train"        : y_train,
        "y_test"         : y_test,
        "scaler"         : scaler,
    }


# ════════════════════════════════════════════════════════════════════════════
# Stage 5 - Models
# ════════════════════════════════════════════════════════════════════════════

def _feature_names(X) -> list[str]:
    if hasattr(X, "columns"):
        return [str(c) for c in X.columns]
    return [f"x{i}" for i in range(np.asarray(X).shape[1])]


def _check_binary_labels(y, model_name: str) -> np.ndarray:
    y_raw = np.asarray(y).ravel()
    if not np.isin(y_raw, [0, 1]).all():
        bad = np.unique(y_raw[~np.isin(y_raw, [0, 1])]).tolist()
        raise ValueError(f"{model_name}: labels must be 0/1, got {bad}")
    y_arr = y_raw.astype(int)
    classes = np.unique(y_arr)
    if classes.size < 2:
        raise InsufficientClassDiversityError(
            f"{model_name}: training labels contain only class {classes.tolist()}; "
            "both classes are required"
        )
    return y_arr


def _n_folds(y: np.ndarray, requested: int, model_name: str) -> int:
    # StratifiedKFold needs every class in every fold
    smallest = int(np.bincount(y, minlength=2).min())
    if smallest < 2:
        raise InsufficientClassDiversityError(
            f"{model_name}: cross-validation needs at least 2 rows of each class"
        )
    return min(requested, smallest)


def _seed_from(rng: np.random.Generator) -> int:
    return int(rng.integers(0, 2**31 - 1))


class ClassifierModel(ABC):
    """
    Uniform interface shared by every model family in the report.

    Required implementations:
    - fit: tune hyperparameters and train on (X, y); returns self
    - predict: 0/1 labels for X

    Optional:
    - predict_proba: P(Outcome = 1) where the family provides it
    - params: chosen hyperparameters for the comparison table
    - plot_diagnostics: tuning curves for the report
    """

    name: str = "model"
    uses_scaled_features: bool = True

    def __init__(self, rng: np.random.Generator | None = None) -> None:
        self.rng = rng if rng is not None else np.random.default_rng(RANDOM_STATE)
        self.estimator = None
        self.feature_names_: list[str] = []
        self.is_fitted = False

    @abstractmethod
    def fit(self, X, y) -> "ClassifierModel":
        raise NotImplementedError

    def predict(self, X) -> np.ndarray:
        self._check_fitted()
        return self.estimator.predict(np.asarray(X, dtype=float)).astype(int)

    def predict_proba(self, X) -> np.ndarray | None:
        return None

    def params(self) -> dict:
        return {}

    def plot_diagnostics(self, plot_dir: str | Path | None = None) -> None:
        return None

    def _check_fitted(self) -> None:
        if not self.is_fitted:
            raise RuntimeError(f"{self.name} must be fitted before predicting")


# ── 5a: KNN ─────────────────────────────────────────────────────────────────

class KNNSelector(ClassifierModel):
    """
    KNN with k chosen by leave-one-out cross-validation.

    Every candidate k is scored from a single neighbour query: each row's
    neighbours exclude the row itself, and the running vote count over the
    sorted neighbour list gives the LOOCV prediction for every k at once.

    Tie-breaks
    ----------
    - Even k with a split vote predicts 0 (the lower label). The fitted
      ``KNeighborsClassifier`` resolves uniform-vote ties the same way.
    - Among k values sharing the minimum error the largest (smoothest)
      k is kept.
    """

    name = "KNN"

    def __init__(self, k_values=KNN_K_VALUES, rng: np.random.Generator | None = None) -> None:
        super().__init__(rng)
        self.k_values = k_values
        self.k_: int | None = None
        self.cv_errors_: pd.Series | None = None

    def fit(self, X, y) -> "KNNSelector":
        y_arr = _check_binary_labels(y, self.name)
        X_arr = np.asarray(X, dtype=float)
        self.feature_names_ = _feature_names(X)
        n = len(y_arr)

        ks = np.array(sorted(k for k in self.k_values if 1 <= k <= n - 1), dtype=int)
        if ks.size == 0:
            raise ValueError(f"{self.name}: no candidate k fits {n} training rows")

        # ── Step 1: neighbours of every row, self excluded ─────────────
        nn = NearestNeighbors(n_neighbors=int(ks.max()), algorithm="brute").fit(X_arr)
        neigh_idx = nn.kneighbors(return_distance=False)

        # ── Step 2: LOOCV prediction for every k ────────────────────────
        positive_votes = np.cumsum(y_arr[neigh_idx], axis=1)[:, ks - 1]
        loo_pred = (2 * positive_votes > ks).astype(int)
        misses = (loo_pred != y_arr[:, None]).sum(axis=0)

        # ── Step 3: largest k among the minimum-error ties ──────────────
        self.k_ = int(ks[misses == misses.min()].max())
        self.cv_errors_ = pd.Series(
            misses / n, index=pd.Index(ks, name="k"), name="loocv_error",
        )

        self.estimator = KNeighborsClassifier(
            n_neighbors=self.k_, algorithm="brute", weights="uniform",
        ).fit(X_arr, y_arr)
        self.is_fitted = True

        print(f"[{self.name}] LOOCV over {ks.size} values of k")
        print(f"  chosen k        : {self.k_}")
        print(f"  LOOCV error     : {self.cv_errors_[self.k_]:.4f}\n")
        return self

    def predict_proba(self, X) -> np.ndarray:
        self._check_fitted()
        return self.estimator.predict_proba(np.asarray(X, dtype=float))[:, 1]

    def params(self) -> dict:
        return {"k": self.k_}

    def plot_diagnostics(self, plot_dir=None) -> None:
        plot_cv_curve(
            self.cv_errors_, self.k_,
            title=f"KNN - LOOCV error by k (chosen k={self.k_})",
            filename="knn_loocv_error.png", plot_dir=plot_dir,
        )


# ── 5b: Logistic regression + cutoff ────────────────────────────────────────

def select_threshold(y_true, proba) -> tuple[float, pd.DataFrame]:
    """
    Choose the probability cutoff closest to the origin in FPR/FNR space.

    Every distinct predicted probability is a candidate; a row is predicted
    positive when ``proba >= cutoff``. The selected cutoff minimises
    ``sqrt(FPR**2 + FNR**2)``, weighing both error types equally instead of
    maximising accuracy. Ties go to the largest cutoff.

    Parameters
    ----------
    y_true : array-like of {0, 1}
    proba : array-like of float
        Predicted P(y = 1), same length as y_true.

    Returns
    -------
    threshold : float
    sweep : pd.DataFrame
        One row per candidate (descending cutoff) with
        ``threshold, fpr, fnr, distance``.

    Raises
    ------
    InsufficientClassDiversityError
        If y_true lacks either class (FPR or FNR would be undefined).
    """
    y_arr = _check_binary_labels(y_true, "select_threshold")
    fpr, tpr, thresholds = roc_curve(y_arr, np.asarray(proba, dtype=float),
                                     drop_intermediate=False)

    # first entry is the "predict nothing positive" sentinel above every score
    sweep = pd.DataFrame({
        "threshold": thresholds[1:],
        "fpr":       fpr[1:],
        "fnr":       1.0 - tpr[1:],
    })
    sweep["distance"] = np.sqrt(sweep["fpr"] ** 2 + sweep["fnr"] ** 2)

    best = int(sweep["distance"].to_numpy().argmin())
    return float(sweep["threshold"].iloc[best]), sweep


class LogisticThresholdModel(ClassifierModel):
    """
    Maximum-likelihood logistic regression with a tuned probability cutoff.

    Fitted by Newton-Raphson through ``statsmodels`` so that the report can
    show standard errors and Wald p-values next to each coefficient.
    """

    name = "Logistic Regression"
    uses_scaled_features = False

    def __init__(self, significance: float = 0.05, rng: np.random.Generator | None = None) -> None:
        super().__init__(rng)
        self.significance = significance
        self.result_ = None
        self.coefficients_: pd.DataFrame | None = None
        self.threshold_: float | None = None
        self.threshold_sweep_: pd.DataFrame | None = None

    @staticmethod
    def _design(X) -> np.ndarray:
        return sm.add_constant(np.asarray(X, dtype=float), has_constant="add")

    def fit(self, X, y) -> "LogisticThresholdModel":
        y_arr = _check_binary_labels(y, self.name)
        self.feature_names_ = _feature_names(X)
        exog = self._design(X)

        self.result_ = sm.Logit(y_arr, exog).fit(disp=0)
        self.estimator = self.result_
        self.is_fitted = True

        self.coefficients_ = pd.DataFrame(
            {
                "estimate":  self.result_.params,
                "std_error": self.result_.bse,
                "z_value":   self.result_.tvalues,
                "p_value":   self.result_.pvalues,
            },
            index=["Intercept", *self.feature_names_],
        )
        self.coefficients_["significant"] = self.coefficients_["p_value"] < self.significance

        self.threshold_, self.threshold_sweep_ = select_threshold(
            y_arr, self.result_.predict(exog),
        )

        print(f"[{self.name}] Coefficients:")
        print(self.coefficients_.round(4).to_string())
        print(f"  chosen cutoff   : {self.threshold_:.4f}\n")
        return self

    def predict_proba(self, X) -> np.ndarray:
        self._check_fitted()
        return np.asarray(self.result_.predict(self._design(X)))

    def predict(self, X) -> np.ndarray:
        return (self.predict_proba(X) >= self.threshold_).astype(int)

    def params(self) -> dict:
        return {"threshold": round(self.threshold_, 4)}

    def plot_diagnostics(self, plot_dir=None) -> None:
        plot_threshold_sweep(self.threshold_sweep_, self.threshold_, plot_dir=plot_dir)


# ── 5c: Lasso / ridge ───────────────────────────────────────────────────────

class PenalizedLogisticCV(ClassifierModel):
    """
    L1- or L2-penalised logistic regression, lambda chosen by k-fold CV.

    Selection minimises cross-validated misclassification (not deviance).
    Among equally good penalties the strongest one wins, because the C
    path is searched from the smallest C (largest lambda) upward.
    """

    def __init__(
        self,
        penalty: str = "l1",
        Cs=PENALTY_CS,
        n_folds: int = CV_FOLDS,
        rng: np.random.Generator | None = None,
    ) -> None:
        super().__init__(rng)
        if penalty not in ("l1", "l2"):
            raise ValueError(f"penalty must be 'l1' or 'l2', got {penalty!r}")
        self.penalty = penalty
        self.Cs = np.sort(np.asarray(Cs, dtype=float))
        self.n_folds = n_folds
        self.lambda_: float | None = None
        self.coef_: pd.Series | None = None
        self.intercept_: float | None = None
        self.cv_errors_: pd.Series | None = None

    @property
    def name(self) -> str:
        return "Lasso" if self.penalty == "l1" else "Ridge"

    def fit(self, X, y) -> "PenalizedLogisticCV":
        y_arr = _check_binary_labels(y, self.name)
        self.feature_names_ = _feature_names(X)
        seed = _seed_from(self.rng)

        cv = StratifiedKFold(
            n_splits=_n_folds(y_arr, self.n_folds, self.name),
            shuffle=True,
            random_state=seed,
        )
        self.estimator = LogisticRegressionCV(
            Cs=self.Cs,
            l1_ratios=(1.0 if self.penalty == "l1" else 0.0,),
            cv=cv,
            solver="liblinear",
            scoring="accuracy",
            refit=True,
            max_iter=1000,
            random_state=seed,
            use_legacy_attributes=False,
        ).fit(np.asarray(X, dtype=float), y_arr)
        self.is_fitted = True

        # a single l1_ratio leaves one score per (fold, C) pair
        fold_scores = np.asarray(self.estimator.scores_).reshape(-1, self.Cs.size)
        self.lambda_ = 1.0 / float(np.ravel(self.estimator.C_)[0])
        self.cv_errors_ = pd.Series(
            1.0 - fold_scores.mean(axis=0),
            index=pd.Index(1.0 / self.Cs, name="lambda"),
            name="cv_error",
        )
        self.coef_ = pd.Series(self.estimator.coef_.ravel(), index=self.feature_names_,
                               name="coefficient")
        self.intercept_ = float(np.ravel(self.estimator.intercept_)[0])

        print(f"[{self.name}] {cv.get_n_splits()}-fold CV over {self.Cs.size} penalties")
        print(f"  chosen lambda   : {self.lambda_:.6g}")
        print(f"  zero coefs      : {self.n_zero_coefficients()} / {self.coef_.size}")
        print(self.coef_.round(4).to_string())
        print()
        return self

    def n_zero_coefficients(self) -> int:
        return int((self.coef_ == 0).sum())

    def predict_proba(self, X) -> np.ndarray:
        self._check_fitted()
        return self.estimator.predict_proba(np.asarray(X, dtype=float))[:, 1]

    def params(self) -> dict:
        return {"lambda": float(f"{self.lambda_:.4g}"), "zero_coefs": self.n_zero_coefficients()}

    def plot_diagnostics(self, plot_dir=None) -> None:
        plot_cv_curve(
            self.cv_errors_, self.lambda_,
            title=f"{self.name} - CV error by lambda",
            filename=f"{self.name.lower()}_cv_error.png", plot_dir=plot_dir, logx=True,
        )


class LassoLogistic(PenalizedLogisticCV):
    def __init__(self, Cs=PENALTY_CS, n_folds: int = CV_FOLDS,
                 rng: np.random.Generator | None = None) -> None:
        super().__init__("l1", Cs, n_folds, rng)


class RidgeLogistic(PenalizedLogisticCV):
    def __init__(self, Cs=PENALTY_CS, n_folds: int = CV_FOLDS,
                 rng: np.random.Generator | None = None) -> None:
        super().__init__("l2", Cs, n_folds, rng)


# ── 5d: SVM ─────────────────────────────────────────────────────────────────

class SVMGridSearch(ClassifierModel):
    """
    Support-vector classifier tuned by stratified k-fold grid search.

    The combination with the lowest mean CV misclassification is refitted
    on the full training set; ties go to the first combination in grid order.
    """

    def __init__(
        self,
        kernel: str = "linear",
        param_grid: dict | None = None,
        n_folds: int = CV_FOLDS,
        rng: np.random.Generator | None = None,
    ) -> None:
        super().__init__(rng)
        self.kernel = kernel
        self.param_grid = param_grid if param_grid is not None else (
            LINEAR_SVM_GRID if kernel == "linear" else RADIAL_SVM_GRID
        )
        self.n_folds = n_folds
        self.search_: GridSearchCV | None = None
        self.best_params_: dict = {}
        self.cv_errors_: pd.DataFrame | None = None

    @property
    def name(self) -> str:
        return f"SVM ({'radial' if self.kernel == 'rbf' else self.kernel})"

    def fit(self, X, y) -> "SVMGridSearch":
        y_arr = _check_binary_labels(y, self.name)
        self.feature_names_ = _feature_names(X)

        cv = StratifiedKFold(
            n_splits=_n_folds(y_arr, self.n_folds, self.name),
            shuffle=True,
            random_state=_seed_from(self.rng),
        )
        self.search_ = GridSearchCV(
            estimator=SVC(kernel=self.kernel),
            param_grid=self.param_grid,
            cv=cv,
            scoring="accuracy",
            refit=True,
        ).fit(np.asarray(X, dtype=float), y_arr)

        self.estimator = self.search_.best_estimator_
        self.best_params_ = dict(self.search_.best_params_)
        self.is_fitted = True

        results = pd.DataFrame(self.search_.cv_results_)
        param_cols = [f"param_{p}" for p in sorted(self.param_grid)]
        self.cv_errors_ = (
            results[param_cols]
            .rename(columns=lambda c: c.replace("param_", ""))
            .assign(cv_error=1.0 - results["mean_test_score"])
        )

        print(f"[{self.name}] {cv.get_n_splits()}-fold CV over {len(results)} combinations")
        print(f"  best params     : {self.best_params_}")
        print(f"  CV error        : {1.0 - self.search_.best_score_:.4f}")
        print(f"  support vectors : {int(self.estimator.n_support_.sum())}\n")
        return self

    @property
    def n_support_(self) -> np.ndarray:
        self._check_fitted()
        return self.estimator.n_support_

    def decision_function(self, X) -> np.ndarray:
        self._check_fitted()
        return self.estimator.decision_function(np.asarray(X, dtype=float))

    def params(self) -> dict:
        return dict(self.best_params_)

    def plot_diagnostics(self, plot_dir=None) -> None:
        plot_svm_grid(self.cv_errors_, self.name, plot_dir=plot_dir)


class LinearSVM(SVMGridSearch):
    def __init__(self, param_grid: dict | None = None, n_folds: int = CV_FOLDS,
                 rng: np.random.Generator | None = None) -> None:
        super().__init__("linear", param_grid, n_folds, rng)


class RadialSVM(SVMGridSearch):
    def __init__(self, param_grid: dict | None = None, n_folds: int = CV_FOLDS,
                 rng: np.random.Generator | None = None) -> None:
        super().__init__("rbf", param_grid, n_folds, rng)


def build_models(rng: np.random.Generator | None = None) -> list[ClassifierModel]:
    """All six model families, sharing one generator for their CV draws."""
    rng = rng if rng is not None else np.random.default_rng(RANDOM_STATE)
    return [
        KNNSelector(rng=rng),
        LogisticThresholdModel(rng=rng),
        LassoLogistic(rng=rng),
        RidgeLogistic(rng=rng),
        LinearSVM(rng=rng),
        RadialSVM(rng=rng),
    ]


# ════════════════════════════════════════════════════════════════════════════
# Stage 6 - Evaluate
# ════════════════════════════════════════════════════════════════════════════

def evaluate_model(
    model: ClassifierModel,
    X: pd.DataFrame,
    y: np.ndarray,
    label: str = "test",
    plot_dir: str | Path | None = None,
) -> dict:
    """
    Evaluate a fitted model on a labelled set.

    The confusion matrix is always oriented with PREDICTED labels as rows
    and OBSERVED labels as columns, so the six reports line up.

    Parameters
    ----------
    model : ClassifierModel
        Fitted model.
    X : pd.DataFrame
        Feature matrix on the scale the model was trained with.
    y : np.ndarray
        True 0/1 labels.
    label : str, default='test'
        Name of the set, used in printed output and figure names.
    plot_dir : str or Path, optional
        When given, a confusion-matrix PNG is written there.

    Returns
    -------
    metrics : dict
        {
            'confusion_matrix': pd.DataFrame,  # predicted x observed
            'accuracy' : float,                # trace / total
            'error'    : float,                # 1 - accuracy
            'precision': float,                # positive class
            'recall'   : float,
            'f1'       : float,
        }
    """
    y = np.asarray(y, dtype=int)
    y_pred = model.predict(X)

    counts = confusion_matrix(y, y_pred, labels=[0, 1]).T
    cm = pd.DataFrame(
        counts,
        index=pd.Index(["Predicted 0", "Predicted 1"]),
        columns=pd.Index(["Observed 0", "Observed 1"]),
    )
    total = int(counts.sum())
    accuracy = float(np.trace(counts) / total) if total else float("nan")

    # ── Compute metrics ──────────────────────────────────────────────────
    metrics = {
        "confusion_matrix": cm,
        "accuracy" : accuracy,
        "error"    : 1.0 - accuracy,
        "precision": precision_score(y, y_pred, zero_division=0),
        "recall"   : recall_score(y, y_pred, zero_division=0),
        "f1"       : f1_score(y, y_pred, zero_division=0),
    }

    print(f"[evaluate_model] {model.name} - {label} set ({total} rows)")
    print(cm.to_string())
    print(f"  Accuracy  : {metrics['accuracy']:.4f}")
    print(f"  Error     : {metrics['error']:.4f}\n")

    if plot_dir is not None:
        fig, ax = plt.subplots(figsize=(5, 4))
        ConfusionMatrixDisplay(counts, display_labels=[0, 1]).plot(ax=ax, cmap="Blues", colorbar=False)
        ax.set_xlabel("Observed")
        ax.set_ylabel("Predicted")
        ax.set_title(f"Confusion Matrix - {model.name} ({label})", fontsize=11)
        _save_figure(fig, f"confusion_{_slug(model.name)}_{label}.png", plot_dir)

    return metrics


def fit_models(
    models: list[ClassifierModel],
    data: dict,
    plot_dir: str | Path | None = None,
) -> dict:
    """
    Fit every model on the features it expects and score train and test.

    Parameters
    ----------
    models : list of ClassifierModel
    data : dict
        Output of prepare_features().
    plot_dir : str or Path, optional
        Destination for diagnostic and confusion-matrix figures.

    Returns
    -------
    dict
        model name → {'model', 'train', 'test'} where 'train' and 'test'
        are evaluate_model() outputs.
    """
    results = {}
    for model in models:
        suffix = "_scaled" if model.uses_scaled_features else ""
        X_train = data["X_train" + suffix]
        X_test = data["X_test" + suffix]

        print("=" * 60)
        print(f"MODEL - {model.name}")
        print("=" * 60)
        model.fit(X_train, data["y_train"])
        if plot_dir is not None:
            model.plot_diagnostics(plot_dir)

        results[model.name] = {
            "model": model,
            "train": evaluate_model(model, X_train, data["y_train"], "train"),
            "test" : evaluate_model(model, X_test, data["y_test"], "test", plot_dir),
        }
    return results


def compare_models(results: dict) -> pd.DataFrame:
    """Comparison table ranked by test error."""
    rows = []
    for name, res in results.items():
        rows.append({
            "model":         name,
            "train_error":   res["train"]["error"],
            "test_error":    res["test"]["error"],
            "test_accuracy": res["test"]["accuracy"],
            "params":        res["model"].params(),
        })
    comparison = (
        pd.DataFrame(rows)
        .sort_values("test_error", kind="stable")
        .set_index("model")
    )

    print("=" * 60)
    print("MODEL COMPARISON - Test Set")
    print("=" * 60)
    print(comparison.round(4).to_string())
    print()
    return comparison


# ════════════════════════════════════════════════════════════════════════════
# Diagnostic plots
# ════════════════════════════════════════════════════════════════════════════

def _slug(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", "_", text.lower()).strip("_")


def _save_figure(fig, filename: str, plot_dir: str | Path) -> Path:
    out_dir = Path(plot_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    path = out_dir / filename
    fig.tight_layout()
    fig.savefig(path, dpi=120)
    plt.close(fig)
    print(f"  [plot] saved {path}")
    return path


def plot_distributions(df: pd.DataFrame, plot_dir: str | Path | None = PLOT_DIR) -> None:
    """Histogram of every column in the raw table."""
    if plot_dir is None:
        return
    n_cols = 3
    n_rows = int(np.ceil(df.shape[1] / n_cols))
    fig, axes = plt.subplots(n_rows, n_cols, figsize=(4 * n_cols, 3 * n_rows))
    for ax, col in zip(np.ravel(axes), df.columns):
        ax.hist(df[col], bins=30, alpha=0.7, edgecolor="black")
        ax.set_title(col, fontsize=10)
    for ax in np.ravel(axes)[df.shape[1]:]:
        ax.set_visible(False)
    _save_figure(fig, "histograms.png", plot_dir)


def plot_pairs(df: pd.DataFrame, plot_dir: str | Path | None = PLOT_DIR) -> None:
    """Pairwise scatterplots of the predictors, coloured by outcome."""
    if plot_dir is None:
        return
    features = [c for c in df.columns if c != TARGET_COL]
    colours = np.where(df[TARGET_COL] == 1, "tab:red", "tab:blue")
    axes = scatter_matrix(df[features], figsize=(12, 12), c=colours, alpha=0.5,
                          diagonal="hist", s=10)
    _save_figure(axes[0, 0].get_figure(), "pairs.png", plot_dir)


def plot_threshold_sweep(
    sweep: pd.DataFrame,
    threshold: float,
    plot_dir: str | Path | None = PLOT_DIR,
) -> None:
    """FPR, FNR and their Euclidean norm against the probability cutoff."""
    if plot_dir is None:
        return
    ordered = sweep.sort_values("threshold")
    fig, ax = plt.subplots(figsize=(7, 4))
    ax.plot(ordered["threshold"], ordered["fpr"], label="FPR")
    ax.plot(ordered["threshold"], ordered["fnr"], label="FNR")
    ax.plot(ordered["threshold"], ordered["distance"], label="sqrt(FPR² + FNR²)", linestyle="--")
    ax.axvline(threshold, color="grey", linestyle=":", label=f"cutoff = {threshold:.3f}")
    ax.set_xlabel("Probability cutoff")
    ax.set_ylabel("Rate")
    ax.set_title("Logistic Regression - cutoff sweep (training set)")
    ax.legend()
    _save_figure(fig, "logistic_threshold_sweep.png", plot_dir)


def plot_cv_curve(
    errors: pd.Series,
    chosen,
    title: str,
    filename: str,
    plot_dir: str | Path | None = PLOT_DIR,
    logx: bool = False,
) -> None:
    """Cross-validation error against a single tuning parameter."""
    if plot_dir is None:
        return
    fig, ax = plt.subplots(figsize=(7, 4))
    ax.plot(errors.index, errors.to_numpy(), marker=".")
    ax.axvline(chosen, color="grey", linestyle=":")
    if logx:
        ax.set_xscale("log")
    ax.set_xlabel(errors.index.name or "parameter")
    ax.set_ylabel("Misclassification rate")
    ax.set_title(title, fontsize=11)
    _save_figure(fig, filename, plot_dir)


def plot_svm_grid(
    cv_errors: pd.DataFrame,
    model_name: str,
    plot_dir: str | Path | None = PLOT_DIR,
) -> None:
    """Line plot over cost, or a cost x gamma heatmap for the radial kernel."""
    if plot_dir is None:
        return
    fig, ax = plt.subplots(figsize=(7, 4))
    if "gamma" in cv_errors.columns:
        grid = cv_errors.pivot_table(index="C", columns="gamma", values="cv_error")
        image = ax.imshow(grid.to_numpy(), cmap="viridis", aspect="auto")
        ax.set_xticks(range(grid.shape[1]), [str(g) for g in grid.columns])
        ax.set_yticks(range(grid.shape[0]), [str(c) for c in grid.index])
        ax.set_xlabel("gamma")
        ax.set_ylabel("cost")
        fig.colorbar(image, ax=ax, label="CV error")
    else:
        ordered = cv_errors.sort_values("C")
        ax.plot(ordered["C"].astype(float), ordered["cv_error"], marker=".")
        ax.set_xscale("log")
        ax.set_xlabel("cost")
        ax.set_ylabel("CV error")
    ax.set_title(f"{model_name} - CV error", fontsize=11)
    _save_figure(fig, f"{_slug(model_name)}_cv_error.png", plot_dir)


# ════════════════════════════════════════════════════════════════════════════
# Orchestrator - main()
# ════════════════════════════════════════════════════════════════════════════

def main(
    source: str | Path = DATASET_PATH,
    seed: int = RANDOM_STATE,
    plot_dir: str | Path | None = PLOT_DIR,
    has_header: bool = True,
) -> dict:
    """
    End-to-end model comparison for diabetes outcome prediction.

    One ``numpy.random.Generator`` built from ``seed`` is threaded through
    the split and every model's cross-validation, so the whole report is
    reproducible without touching global random state.

        load_data()
            └─► clean_data(df)
                    └─► split_data  (70/30, seeded permutation)
                            └─► prepare_features  (train-only scaling)
                                    ├─► fit_models(build_models(rng))
                                    └─► compare_models(results)

    Returns
    -------
    dict
        'df_raw', 'df_clean', 'train_df', 'test_df' : pd.DataFrame
        'data'       : prepare_features() output
        'results'    : fit_models() output
        'comparison' : pd.DataFrame ranked by test error
    """
    print("╔══════════════════════════════════════════════════════╗")
    print("║   Pima Diabetes - Model Comparison Report           ║")
    print("╚══════════════════════════════════════════════════════╝\n")
    rng = np.random.default_rng(seed)

    # ── Stage 1: Acquire data ────────────────────────────────────────────
    print("── Stage 1: Data Acquisition ──────────────────────────")
    df_raw = load_data(source, has_header=has_header)
    summarize_zeros(df_raw)
    plot_distributions(df_raw, plot_dir)

    # ── Stage 2: Clean ───────────────────────────────────────────────────
    print("── Stage 2: Cleaning ──────────────────────────────────")
    df_clean = clean_data(df_raw)
    plot_pairs(df_clean, plot_dir)

    # ── Stage 3: Split ───────────────────────────────────────────────────
    print(f"── Stage 3: Train/Test Split ({TRAIN_FRACTION:.0%}, seed={seed}) ─────")
    train_df, test_df = split_data(df_clean, TRAIN_FRACTION, rng)

    # ── Stage 4: Scale ───────────────────────────────────────────────────
    print("── Stage 4: Feature Scaling ───────────────────────────")
    data = prepare_features(train_df, test_df)

    # ── Stage 5–6: Train + evaluate ──────────────────────────────────────
    print("── Stage 5: Training + Evaluation ─────────────────────")
    results = fit_models(build_models(rng), data, plot_dir)
    comparison = compare_models(results)

    print("╔══════════════════════════════════════════════════════╗")
    print("║   Pipeline complete.                                 ║")
    print("╚══════════════════════════════════════════════════════╝")

    return {
        "df_raw"     : df_raw,
        "df_clean"   : df_clean,
        "train_df"   : train_df,
        "test_df"    : test_df,
        "data"       : data,
        "results"    : results,
        "comparison" : comparison,
    }


# ════════════════════════════════════════════════════════════════════════════
# Stage 7 - Sanity Checks / Debugging
# ════════════════════════════════════════════════════════════════════════════

def run_sanity_checks(
    df_clean: pd.DataFrame,
    train_df: pd.DataFrame,
    test_df: pd.DataFrame,
    data: dict,
    results: dict,
) -> int:
    """
    Assert-based sanity checks across every pipeline artefact.

    Each failed assert raises AssertionError with an actionable FIX message
    rather than letting a broken artefact flow into the report.

    Checks
    ------
     1  Cleaned table has 7 columns            (SkinThickness, Insulin gone)
     2  No sentinel zeros left                 (Glucose, BloodPressure, BMI)
     3  Train + Test == cleaned rows           (no dropped/duplicated rows)
     4  Train and test share no rows           (disjoint partition)
     5  Train ratio ≈ 70%                      (split ratio sanity)
     6  Scaled training means ≈ 0
     7  Scaled training stds ≈ 1
     8+ Per model: predictions are 0/1, test error in [0, 1]

    Returns
    -------
    int : number of checks passed.

    Raises
    ------
    AssertionError  On the first failing check, with label + FIX hint.
    """
    checks_passed = 0

    def check(condition: bool, label: str, fix: str = "") -> None:
        nonlocal checks_passed
        msg = label + (f"\n         FIX → {fix}" if fix else "")
        assert condition, msg
        checks_passed += 1
        print(f"  [PASS]  {label}")

    print("=" * 60)
    print("SANITY CHECKS")
    print("=" * 60)

    # ── 1–2: Cleaned schema ──────────────────────────────────────────────
    check(
        df_clean.shape[1] == len(COLUMN_NAMES) - len(DROPPED_COLS),
        f"Cleaned table has 7 columns  (got {df_clean.shape[1]})",
        f"clean_data() must drop exactly {DROPPED_COLS}.",
    )
    zeros = int((df_clean[ZERO_AS_MISSING_COLS] == 0).sum().sum())
    check(
        zeros == 0,
        f"No sentinel zeros in {ZERO_AS_MISSING_COLS}  (found {zeros})",
        "Filter rows on ZERO_AS_MISSING_COLS before splitting.",
    )

    # ── 3–5: Partition ───────────────────────────────────────────────────
    check(
        len(train_df) + len(test_df) == len(df_clean),
        f"Train ({len(train_df)}) + Test ({len(test_df)}) == {len(df_clean)}",
        "Split the cleaned table once, from a single permutation.",
    )
    overlap = train_df.index.intersection(test_df.index)
    check(
        overlap.empty,
        f"Train and test are disjoint  ({len(overlap)} shared rows)",
        "Do not resample the permutation between train and test slices.",
    )
    ratio = len(train_df) / max(len(df_clean), 1)
    check(
        abs(ratio - TRAIN_FRACTION) < 0.01 or len(df_clean) < 100,
        f"Train ratio ≈ {TRAIN_FRACTION:.0%}  (actual {ratio:.1%})",
        f"Verify TRAIN_FRACTION = {TRAIN_FRACTION}.",
    )

    # ── 6–7: Scaling ─────────────────────────────────────────────────────
    scaled = data["X_train_scaled"].to_numpy()
    check(
        np.allclose(scaled.mean(axis=0), 0.0, atol=1e-8),
        "Scaled training columns have mean ≈ 0",
        "Fit FeatureScaler on X_train only.",
    )
    check(
        np.allclose(scaled.std(axis=0), 1.0, atol=1e-8),
        "Scaled training columns have std ≈ 1",
        "Fit FeatureScaler on X_train only.",
    )

    # ── 8+: Model outputs ────────────────────────────────────────────────
    for name, res in results.items():
        model = res["model"]
        suffix = "_scaled" if model.uses_scaled_features else ""
        y_pred = model.predict(data["X_test" + suffix])
        check(
            set(np.unique(y_pred)) <= {0, 1},
            f"{name}: predictions are 0/1",
            "predict() must return integer labels.",
        )
        err = res["test"]["error"]
        check(
            0.0 <= err <= 1.0,
            f"{name}: test error in [0, 1]  ({err:.4f})",
            "Check the confusion matrix has a non-empty total.",
        )

    print()
    print("=" * 60)
    print(f"  {checks_passed} checks passed")
    print("=" * 60)
    return checks_passed


# ── Entry point ──────────────────────────────────────────────────────────────
if __name__ == "__main__":
    # The local copy carries a header row; the public mirror does not
    if Path(DATASET_PATH).exists():
        run = main(DATASET_PATH)
    else:
        run = main(DATASET_URL, has_header=False)

    print("\n── Stage 7: Sanity Checks ─────────────────────────────")
    run_sanity_checks(
        df_clean = run["df_clean"],
        train_df = run["train_df"],
        test_df  = run["test_df"],
        data     = run["data"],
        results  = run["results"],
    )

    sys.exit(0)
