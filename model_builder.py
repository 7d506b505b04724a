"""
Validation strategy comparison for the house price regressor.

Trains the same network with a fraction-based validation split, an explicit
held-out set and k-fold cross-validation, retrains for the cross-validated
best epoch and scores the result on the test set.
"""

import os
import tensorflow as tf
from house_cv.ValidationStudy import ValidationStudy

# --- PATHS & DATA ---
DATA_FOLDER = "data"
DATA_FILE = "housing.csv"
DATA_PATH = os.path.join(DATA_FOLDER, DATA_FILE)
TARGET_COLUMN = "price"

MODELS_FOLDER = os.path.join("data", "trained_models")
LOG_FILE = os.path.join("data", "validation_study_docs.csv")
FIGURES_FOLDER = "figures"

TEST_SIZE = 0.2
VALIDATION_FRACTION = 0.2
N_SPLITS = 10
REPEATS = 3
SEED = 42

hyperparams = {
    'layer_sizes': [64, 64],
    'learning_rate': 1e-3,
    'epochs': 100,
    'batch_size': 32,
    'batch_norm': False,
    'activation': 'relu',
    'optimizer_class': tf.keras.optimizers.Adam,
    'loss_function': 'mse',
    'use_early_stopping': False,
    'dropout_rate': None,
    'schedule_policy': 'reduce_on_plateau',
    'verbose': False
}

if __name__ == "__main__":
    study = ValidationStudy(
        data_path=DATA_PATH,
        hyperparameters=hyperparams,
        target_column=TARGET_COLUMN,
        test_size=TEST_SIZE,
        n_splits=N_SPLITS,
        seed=SEED,
        validation_fraction=VALIDATION_FRACTION,
        repeats=REPEATS,
        log_target=True,
        models_log=LOG_FILE,
        models_folder=MODELS_FOLDER,
        figures_folder=FIGURES_FOLDER
    )
    model, summary, cv_result, test_metrics = study.build_and_train(v=True)

    print()
    print(summary.to_string(index=False))
    print()
    print(study)
