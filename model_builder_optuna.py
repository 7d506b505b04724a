import functools
import optuna
import os
import tensorflow as tf
from house_cv.CrossValidator import cross_validate, training_config_from
from house_cv.DATA_preprocess import HousingDataPreparer
from house_cv.DNN import make_model_factory

# --- Configuration ---
DATA_FOLDER = "data"
DATA_FILE = "housing.csv"
DATA_PATH = os.path.join(DATA_FOLDER, DATA_FILE)
TARGET_COLUMN = "price"

TEST_SIZE = 0.2
N_SPLITS = 5
SEED = 42
EPOCHS = 100

# --- Hyperparameter Search Space ---
HYPERPARAMETER_SEARCH_SPACE = {
    "n_layers": (1, 4),
    "n_units": (16, 256, 16),
    "dropout_rate": (0.0, 0.4),
    "use_batch_norm": [True, False],
    "learning_rate": (1e-4, 1e-2),
    "optimizer": ["adam", "nadam", "rmsprop"],
    "batch_size": [16, 32, 64],
    "schedule_policy": ["constant", "reduce_on_plateau", "exponential_decay"],
    "activation": ["relu", "swish", "gelu"],
}

# --- Data ---
# Prepared on first use; every trial cross-validates on the same training rows
@functools.lru_cache(maxsize=1)
def training_data():
    preparer = HousingDataPreparer(DATA_PATH, target_column=TARGET_COLUMN,
                                   test_size=TEST_SIZE, log_target=True, random_state=SEED)
    train, _ = preparer.prepare()
    return train


# --- Objective Function ---
def objective(trial):
    n_layers = trial.suggest_int("n_layers", *HYPERPARAMETER_SEARCH_SPACE["n_layers"])
    layer_sizes = [
        trial.suggest_int(f"n_units_l{i}",
                          HYPERPARAMETER_SEARCH_SPACE["n_units"][0],
                          HYPERPARAMETER_SEARCH_SPACE["n_units"][1],
                          step=HYPERPARAMETER_SEARCH_SPACE["n_units"][2])
        for i in range(n_layers)
    ]

    dropout_rate = trial.suggest_float("dropout_rate", *HYPERPARAMETER_SEARCH_SPACE["dropout_rate"])
    batch_norm = trial.suggest_categorical("use_batch_norm", HYPERPARAMETER_SEARCH_SPACE["use_batch_norm"])

    lr = trial.suggest_float("learning_rate", *HYPERPARAMETER_SEARCH_SPACE["learning_rate"], log=True)

    optimizer_name = trial.suggest_categorical("optimizer", HYPERPARAMETER_SEARCH_SPACE["optimizer"])
    optimizer_map = {
        "adam": tf.keras.optimizers.Adam,
        "nadam": tf.keras.optimizers.Nadam,
        "rmsprop": tf.keras.optimizers.RMSprop,
    }

    hyperparams = {
        'layer_sizes': layer_sizes,
        'learning_rate': lr,
        'epochs': EPOCHS,
        'batch_size': trial.suggest_categorical("batch_size", HYPERPARAMETER_SEARCH_SPACE["batch_size"]),
        'batch_norm': batch_norm,
        'activation': trial.suggest_categorical("activation", HYPERPARAMETER_SEARCH_SPACE["activation"]),
        'optimizer_class': optimizer_map[optimizer_name],
        'loss_function': 'mse',
        'use_early_stopping': False,
        'dropout_rate': dropout_rate,
        'schedule_policy': trial.suggest_categorical("schedule_policy",
                                                     HYPERPARAMETER_SEARCH_SPACE["schedule_policy"]),
        'verbose': False
    }

    train = training_data()
    factory = make_model_factory(train.X.shape[1], hyperparams, seed=SEED)
    result = cross_validate(train, factory, N_SPLITS, SEED, training_config_from(hyperparams))

    trial.set_user_attr("best_epoch", result.best.epoch)
    trial.set_user_attr("val_loss_std", result.best.std_loss)
    return result.best.mean_loss

# --- Run Optuna ---
if __name__ == "__main__":
    study = optuna.create_study(direction="minimize")
    study.optimize(objective, n_trials=50, timeout=None)

    print("\nBest trial:")
    best = study.best_trial
    print(f"  Value (mean CV val loss): {best.value:.6f}")
    print(f"  Best epoch: {best.user_attrs['best_epoch']}")
    print("  Params:")
    for key, value in best.params.items():
        print(f"    {key}: {value}")
