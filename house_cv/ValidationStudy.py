# -*- coding: utf-8 -*-
"""
ValidationStudy

Compares three ways of validating the same house price regressor:

    fraction  - the trailing fraction of the training rows is used for validation
    holdout   - an explicit, shuffled held-out set is split off the training rows
    kfold     - k-fold cross-validation (see CrossValidator)

Every strategy trains fresh models from one model factory and produces metric
records in the same long format, so the spread of the validation loss can be
compared directly. After the comparison the model is retrained on the full
training set for the cross-validated best epoch, scored once on the test set,
saved together with its scaler and logged to a CSV file of experiments.
"""

import os
import datetime
from os import path

import joblib
import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns
from sklearn.model_selection import train_test_split

from house_cv.CrossValidator import (
    VALIDATION, cross_validate, history_to_records, print_fold_progress,
    retrain_and_score, select_best_epoch, training_config_from,
)
from house_cv.DATA_preprocess import HousingDataPreparer
from house_cv.DNN import make_model_factory

STRATEGIES = ('fraction', 'holdout', 'kfold')


class ValidationStudy:
    """
    Runs the validation strategy comparison for one dataset and one set of
    hyperparameters, then retrains, evaluates, saves and logs the final model.
    """

    def __init__(self, data_path, hyperparameters,
                 model_factory=None,
                 target_column='price',
                 test_size=0.2,
                 n_splits=10,
                 seed=42,
                 validation_fraction=0.2,
                 repeats=1,
                 log_target=False,
                 models_log=os.path.join("data", "validation_study_docs.csv"),
                 models_folder=os.path.join("data", "trained_models"),
                 figures_folder=os.path.join("figures")):
        """
        Parameters:
            data_path (str): CSV with the housing table.
            hyperparameters (dict): Model and training settings (see DNN.DEFAULT_HYPERPARAMETERS).
            model_factory (callable, optional): Zero-argument model constructor. When
                omitted a HousePriceDNN factory is built once the feature count is known.
            target_column (str): Name of the price column.
            test_size (float): Fraction of rows kept aside as the test set.
            n_splits (int): Number of cross-validation folds.
            seed (int): Seed for fold assignment, held-out splits and model initialisation.
            validation_fraction (float): Validation share for the fraction and holdout strategies.
            repeats (int): Runs of the fraction and holdout strategies, each on a
                different shuffle of the training rows.
            log_target (bool): Train on log1p(price).
            models_log (str): CSV file the run is appended to.
            models_folder (str): Directory for the saved model and scaler.
            figures_folder (str or None): Directory for figures, None to skip plotting.
        """
        self.data_path = data_path
        self.hyperparameters = hyperparameters
        self.model_factory = model_factory
        self.n_splits = n_splits
        self.seed = seed
        self.validation_fraction = validation_fraction
        self.repeats = repeats
        self.models_log = models_log
        self.models_folder = models_folder
        self.figures_folder = figures_folder

        self.training_config = training_config_from(hyperparameters)
        self.preparer = HousingDataPreparer(
            data_path, target_column=target_column, test_size=test_size,
            log_target=log_target, random_state=seed)

        self.train = None
        self.test = None
        self.records = None
        self.cv_result = None
        self.summary = None
        self.model = None
        self.test_metrics = {}
        self.model_name = None
        self.trained_at = None
        self.training_duration = None

    def __str__(self):
        if self.model_name:
            best = self.cv_result.best
            return (f"ValidationStudy Summary\n"
                    f"Model: {self.model_name}\n"
                    f"Trained at: {self.trained_at}\n"
                    f"Best epoch: {best.epoch} "
                    f"(val loss {best.mean_loss:.4f} +/- {best.std_loss:.4f} over {self.n_splits} folds)\n"
                    f"Test loss: {self.test_metrics['loss']:.4f}, Test MAE: {self.test_metrics['mae']:.4f}")
        return "ValidationStudy (not run)"

    def _load_data(self, df=None):
        self.train, self.test = self.preparer.prepare(df)
        if self.model_factory is None:
            self.model_factory = make_model_factory(
                self.train.X.shape[1], self.hyperparameters, seed=self.seed)

    def _run_split(self, strategy, run, X, y):
        """Train one fresh model with a single validation split."""
        model = self.model_factory()
        cfg = self.training_config
        if strategy == 'fraction':
            # Trailing rows validate, as with Keras validation_split
            n_fit = len(y) - int(len(y) * self.validation_fraction)
            X_fit, X_val, y_fit, y_val = X[:n_fit], X[n_fit:], y[:n_fit], y[n_fit:]
        else:
            X_fit, X_val, y_fit, y_val = train_test_split(
                X, y, test_size=self.validation_fraction, random_state=self.seed + run)
        history = model.fit(X_fit, y_fit, X_val, y_val, epochs=cfg.epochs,
                            batch_size=cfg.batch_size, schedule_policy=cfg.schedule_policy)
        return history_to_records(history, run)

    def _run_strategies(self, v=False):
        """Runs the three validation strategies and collects their records."""
        frames = []
        for strategy in ('fraction', 'holdout'):
            for run in range(1, self.repeats + 1):
                # Each repeat sees its own ordering of the training rows
                order = np.random.default_rng(self.seed + run).permutation(len(self.train.y))
                records = self._run_split(strategy, run, self.train.X[order], self.train.y[order])
                frames.append(records.assign(strategy=strategy))
                if v: print(f"[INFO] {strategy} run {run}/{self.repeats} done")

        progress = print_fold_progress if v else None
        self.cv_result = cross_validate(
            self.train, self.model_factory, self.n_splits, self.seed,
            self.training_config, progress=progress)
        frames.append(self.cv_result.records.assign(strategy='kfold'))

        self.records = pd.concat(frames, ignore_index=True)

    def _summarise(self):
        """Validation loss at the best epoch of each strategy, with its spread over runs/folds."""
        rows = []
        for strategy in STRATEGIES:
            records = self.records[self.records['strategy'] == strategy]
            runs = records['fold'].nunique()
            best = select_best_epoch(records, n_folds=runs)
            rows.append({
                'strategy': strategy,
                'runs': runs,
                'best_epoch': best.epoch,
                'val_loss_mean': best.mean_loss,
                'val_loss_std': best.std_loss,
                'val_loss_var': best.std_loss ** 2,
            })
        self.summary = pd.DataFrame(rows)

    def _retrain_and_evaluate(self):
        """Retrains on all training rows for the cross-validated best epoch and scores on the test set."""
        start = datetime.datetime.now()
        self.model, _, self.test_metrics = retrain_and_score(
            self.train, self.test, self.model_factory, self.cv_result.best.epoch,
            self.training_config, validation_fraction=self.validation_fraction, seed=self.seed)
        end = datetime.datetime.now()
        self.training_duration = (end - start).total_seconds()

    def _save_model(self):
        """Saves the final model and the fitted scaler in a timestamped name."""
        now = datetime.datetime.now()
        base_name = os.path.splitext(os.path.basename(self.data_path or "dataframe"))[0]
        self.model_name = f"model_{base_name}__{now.strftime('%y%m%d_%H%M%S')}"
        self.trained_at = now.strftime('%Y-%m-%d %H:%M:%S')

        os.makedirs(self.models_folder, exist_ok=True)
        self.model.save(path.join(self.models_folder, self.model_name + ".keras"))
        joblib.dump(self.preparer.scaler, path.join(self.models_folder, self.model_name + "_scaler.pkl"))

    def _log_model(self):
        """Appends the run configuration, strategy comparison and test metrics to the CSV log."""
        try:
            df_log = pd.read_csv(self.models_log)
        except FileNotFoundError:
            df_log = pd.DataFrame()

        by_strategy = {f"{row.strategy}_{col}": getattr(row, col)
                       for row in self.summary.itertuples()
                       for col in ('best_epoch', 'val_loss_mean', 'val_loss_std')}

        optimizer = self.hyperparameters.get('optimizer_class')
        df_log = pd.concat([df_log, pd.DataFrame([{
            'model_name': self.model_name,
            'data_file': os.path.basename(self.data_path or ""),
            'trained_at': self.trained_at,
            'training_duration': self.training_duration,
            'layer_sizes': self.hyperparameters.get('layer_sizes'),
            'learning_rate': self.hyperparameters.get('learning_rate'),
            'epochs': self.training_config.epochs,
            'batch_size': self.training_config.batch_size,
            'schedule_policy': self.training_config.schedule_policy,
            'n_splits': self.n_splits,
            'seed': self.seed,
            'num_features': self.train.X.shape[1],
            'best_epoch': self.cv_result.best.epoch,
            **by_strategy,
            'test_loss': self.test_metrics['loss'],
            'test_mae': self.test_metrics['mae'],
            'optimizer': getattr(optimizer, '__name__', optimizer),
        }])], ignore_index=True)

        os.makedirs(os.path.dirname(self.models_log) or ".", exist_ok=True)
        df_log.to_csv(self.models_log, index=False)

    def _plot(self):
        """Validation loss curves per strategy and the spread of the best-epoch loss."""
        os.makedirs(self.figures_folder, exist_ok=True)
        val_loss = self.records[(self.records['metric'] == 'loss') & (self.records['split'] == VALIDATION)]

        # --- Plot 1: validation loss per epoch, one line per fold/run ---
        fig, axes = plt.subplots(1, len(STRATEGIES), figsize=(16, 5), sharey=True)
        for ax, strategy in zip(axes, STRATEGIES):
            data = val_loss[val_loss['strategy'] == strategy]
            sns.lineplot(data=data, x='epoch', y='value', hue='fold', palette='tab10',
                         legend=False, ax=ax)
            ax.set_title(strategy)
            ax.set_ylabel("Validation loss")
            ax.grid(True)
        best = self.cv_result.best.epoch
        axes[-1].axvline(best, color='black', linestyle='--', label=f"best epoch {best}")
        axes[-1].legend()
        fig.tight_layout()
        fig.savefig(os.path.join(self.figures_folder, "validation_loss_curves.png"))
        plt.close(fig)

        # --- Plot 2: spread of the validation loss at the best epoch ---
        fig, ax = plt.subplots(figsize=(8, 5))
        sns.barplot(data=self.summary, x='strategy', y='val_loss_mean', ax=ax)
        ax.errorbar(range(len(self.summary)), self.summary['val_loss_mean'],
                    yerr=self.summary['val_loss_std'].fillna(0), fmt='none', color='black', capsize=6)
        ax.set_title("Validation loss at best epoch (mean +/- std)")
        ax.grid(True)
        fig.tight_layout()
        fig.savefig(os.path.join(self.figures_folder, "validation_loss_spread.png"))
        plt.close(fig)

    def build_and_train(self, df=None, v=False):
        """
        Full pipeline: prepare data, compare validation strategies, retrain at the
        best epoch, evaluate, save, log and plot.

        Parameters:
            df (pd.DataFrame, optional): Housing table to use instead of reading data_path.
            v (bool): If True, prints stage and fold progress to stdout.

        Returns:
            tuple: (final model, strategy summary, cross-validation result, test metrics)
        """
        if v: print("[INFO] Preparing data...")
        self._load_data(df)

        if v: print("[INFO] Running validation strategies...")
        self._run_strategies(v)
        self._summarise()

        if v: print(f"[INFO] Retraining for {self.cv_result.best.epoch} epochs...")
        self._retrain_and_evaluate()

        if v: print("[INFO] Saving model...")
        self._save_model()

        if v: print("[INFO] Logging results...")
        self._log_model()

        if self.figures_folder is not None:
            if v: print("[INFO] Plotting...")
            self._plot()

        return self.model, self.summary, self.cv_result, self.test_metrics
