# -*- coding: utf-8 -*-
"""
CrossValidator

K-fold cross-validation for a trainable regression model. The module builds
reproducible fold assignments, trains one freshly constructed model per fold
(validating on the fold, training on its complement), collects the per-epoch
metric history of every fold into one long-format table and selects the epoch
with the lowest mean validation loss across folds.

The model is only seen through a zero-argument factory returning an object with
    fit(train_X, train_y, val_X, val_y, epochs, batch_size, schedule_policy) -> dict
    evaluate(test_X, test_y) -> dict
where the dict returned by fit maps Keras-style history keys ('loss', 'mae',
'val_loss', 'val_mae', ...) to one value per epoch.
"""

from collections import namedtuple

import numpy as np
import pandas as pd
from sklearn.model_selection import train_test_split


RECORD_COLUMNS = ['fold', 'epoch', 'metric', 'split', 'value']
TRAIN = 'train'
VALIDATION = 'validation'

Dataset = namedtuple('Dataset', ['X', 'y'])
BestEpoch = namedtuple('BestEpoch', ['epoch', 'mean_loss', 'std_loss'])
TrainingConfig = namedtuple('TrainingConfig', ['epochs', 'batch_size', 'schedule_policy'])
CrossValidationResult = namedtuple('CrossValidationResult', ['fold_ids', 'records', 'best'])


class CrossValidationError(Exception):
    """Base class for cross-validation errors."""


class InvalidFoldCount(CrossValidationError):
    """Fold count is below 2 or exceeds the number of rows."""


class RowCountMismatch(CrossValidationError):
    """Feature matrix and label vector have different row counts."""


class EmptyPartition(CrossValidationError):
    """A fold produced an empty train or validation partition."""


class TrainingFailure(CrossValidationError):
    """The model raised while being fitted on a fold."""


def make_dataset(X, y) -> Dataset:
    """Wrap a feature matrix and label vector, checking that their rows line up."""
    X = np.array(X, dtype=float)
    y = np.array(y, dtype=float)
    if X.ndim == 1:
        X = X.reshape(-1, 1)
    if X.shape[0] != y.shape[0]:
        raise RowCountMismatch(
            f"feature matrix has {X.shape[0]} rows but label vector has {y.shape[0]} entries")
    X.setflags(write=False)
    y.setflags(write=False)
    return Dataset(X, y)


def training_config_from(hyperparameters: dict) -> TrainingConfig:
    """Pick the training settings out of a hyperparameter dict."""
    return TrainingConfig(
        epochs=hyperparameters['epochs'],
        batch_size=hyperparameters['batch_size'],
        schedule_policy=hyperparameters.get('schedule_policy'))


def make_folds(n_rows: int, k: int, seed: int) -> np.ndarray:
    """
    Assign every row to one of k folds.

    Row indices are shuffled with a generator seeded by `seed` and the shuffled
    sequence is cut into k contiguous segments whose lengths differ by at most
    one; the first n_rows % k folds take the extra rows.

    Returns:
        np.ndarray: fold id (1..k) for each original row index.
    """
    if k < 2 or k > n_rows:
        raise InvalidFoldCount(f"k must be between 2 and {n_rows}, got {k}")

    permutation = np.random.default_rng(seed).permutation(n_rows)
    fold_ids = np.empty(n_rows, dtype=int)
    for fold, segment in enumerate(np.array_split(permutation, k), start=1):
        fold_ids[segment] = fold
    return fold_ids


def fold_partition(fold_ids: np.ndarray, fold: int):
    """Return (train_rows, validation_rows) index arrays for one fold."""
    fold_ids = np.asarray(fold_ids)
    validation_rows = np.flatnonzero(fold_ids == fold)
    train_rows = np.flatnonzero(fold_ids != fold)
    return train_rows, validation_rows


def history_to_records(history: dict, fold: int) -> pd.DataFrame:
    """Flatten a Keras-style history dict into metric records for one fold."""
    rows = []
    for key, values in history.items():
        if key.startswith('val_'):
            metric, split = key[len('val_'):], VALIDATION
        else:
            metric, split = key, TRAIN
        for epoch, value in enumerate(values, start=1):
            rows.append((fold, epoch, metric, split, float(value)))
    return pd.DataFrame(rows, columns=RECORD_COLUMNS)


def train_fold(dataset: Dataset, fold_ids: np.ndarray, fold: int,
               model_factory, training_config: TrainingConfig) -> pd.DataFrame:
    """
    Train a fresh model on the complement of `fold` and validate on `fold`.

    Parameters:
        dataset (Dataset): Full feature matrix and labels.
        fold_ids (np.ndarray): Fold id of each row, as produced by make_folds.
        fold (int): Fold used for validation.
        model_factory (callable): Zero-argument constructor of an untrained model.
        training_config (TrainingConfig): Epochs, batch size and schedule policy.

    Returns:
        pd.DataFrame: Per-epoch records of this fold (RECORD_COLUMNS).
    """
    train_rows, validation_rows = fold_partition(fold_ids, fold)
    if len(train_rows) == 0 or len(validation_rows) == 0:
        raise EmptyPartition(
            f"fold {fold}: {len(train_rows)} train rows, {len(validation_rows)} validation rows")

    model = model_factory()
    try:
        history = model.fit(
            dataset.X[train_rows], dataset.y[train_rows],
            dataset.X[validation_rows], dataset.y[validation_rows],
            epochs=training_config.epochs,
            batch_size=training_config.batch_size,
            schedule_policy=training_config.schedule_policy)
    except Exception as exc:
        raise TrainingFailure(f"training failed on fold {fold}: {exc}") from exc

    return history_to_records(history, fold)


def select_best_epoch(records: pd.DataFrame, n_folds: int = None) -> BestEpoch:
    """
    Select the epoch with the lowest mean validation loss across folds.

    Exact ties go to the earliest epoch. When `n_folds` is given, epochs not
    reported by every fold (e.g. cut short by early stopping) are not eligible.
    """
    val_loss = records[(records['metric'] == 'loss') & (records['split'] == VALIDATION)]
    if val_loss.empty:
        raise ValueError("no validation loss records to select an epoch from")

    per_epoch = val_loss.groupby('epoch')['value'].agg(['mean', 'std', 'count']).sort_index()
    if n_folds is not None:
        per_epoch = per_epoch[per_epoch['count'] == n_folds]
        if per_epoch.empty:
            raise ValueError(f"no epoch was reported by all {n_folds} folds")

    # idxmin returns the first occurrence, i.e. the smallest epoch on ties
    epoch = int(per_epoch['mean'].idxmin())
    best = per_epoch.loc[epoch]
    return BestEpoch(epoch, float(best['mean']), float(best['std']))


def cross_validate(dataset: Dataset, model_factory, k: int, seed: int,
                   training_config: TrainingConfig, progress=None) -> CrossValidationResult:
    """
    Run k-fold cross-validation, one fold after the other in increasing order.

    Parameters:
        dataset (Dataset): Training features and labels.
        model_factory (callable): Zero-argument constructor of an untrained model.
        k (int): Number of folds.
        seed (int): Seed of the fold assignment.
        training_config (TrainingConfig): Epochs, batch size and schedule policy.
        progress (callable, optional): Called as progress(fold, k, fold_records)
            after each fold completes.

    Returns:
        CrossValidationResult: fold ids, combined records and the best epoch.
    """
    if np.shape(dataset.X)[0] != len(dataset.y):
        raise RowCountMismatch(
            f"feature matrix has {np.shape(dataset.X)[0]} rows but label vector has {len(dataset.y)} entries")

    fold_ids = make_folds(len(dataset.y), k, seed)

    fold_records = []
    for fold in range(1, k + 1):
        records = train_fold(dataset, fold_ids, fold, model_factory, training_config)
        fold_records.append(records)
        if progress is not None:
            progress(fold, k, records)

    records = pd.concat(fold_records, ignore_index=True)
    return CrossValidationResult(fold_ids, records, select_best_epoch(records, n_folds=k))


def retrain_and_score(train: Dataset, test: Dataset, model_factory, best_epoch: int,
                      training_config: TrainingConfig, validation_fraction: float = 0.1,
                      seed: int = 42):
    """
    Retrain a fresh model on the whole training set for `best_epoch` epochs and
    score it once on the untouched test set.

    A single validation fraction of the training rows is held out for monitoring.

    Returns:
        tuple: (trained model, history dict, test metrics dict)
    """
    X_fit, X_val, y_fit, y_val = train_test_split(
        train.X, train.y, test_size=validation_fraction, random_state=seed)

    model = model_factory()
    try:
        history = model.fit(
            X_fit, y_fit, X_val, y_val,
            epochs=best_epoch,
            batch_size=training_config.batch_size,
            schedule_policy=training_config.schedule_policy)
    except Exception as exc:
        raise TrainingFailure(f"final retraining failed: {exc}") from exc

    return model, history, model.evaluate(test.X, test.y)


def print_fold_progress(fold, k, records):
    """Progress callback printing the last validation loss of a finished fold."""
    val_loss = records[(records['metric'] == 'loss') & (records['split'] == VALIDATION)]
    last = val_loss['value'].iloc[-1] if not val_loss.empty else float('nan')
    print(f"[INFO] Fold {fold}/{k} done - {val_loss['epoch'].max()} epochs, final val_loss={last:.4f}")


class CrossValidator:
    """
    Holds the cross-validation settings (fold count, seed, training config)
    and runs them against a dataset and model factory.
    """

    def __init__(self, n_splits=10, seed=42, hyperparameters=None):
        self.n_splits = n_splits
        self.seed = seed
        self.training_config = training_config_from(hyperparameters or {'epochs': 100, 'batch_size': 32})
        self.result = None

    def run(self, dataset, model_factory, progress=None):
        self.result = cross_validate(
            dataset, model_factory, self.n_splits, self.seed, self.training_config, progress=progress)
        return self.result

    def summary(self):
        """Mean and std of the validation loss per epoch across folds."""
        if self.result is None:
            raise ValueError("CrossValidator has not been run")
        records = self.result.records
        val_loss = records[(records['metric'] == 'loss') & (records['split'] == VALIDATION)]
        return val_loss.groupby('epoch')['value'].agg(['mean', 'std'])
