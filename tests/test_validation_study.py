import os

import pandas as pd
import pytest

from house_cv.ValidationStudy import STRATEGIES, ValidationStudy

HYPERPARAMS = {
    'layer_sizes': [8],
    'learning_rate': 1e-3,
    'epochs': 6,
    'batch_size': 16,
    'optimizer_class': None,
    'schedule_policy': None,
}


def make_study(tmp_path, factory, **kwargs):
    return ValidationStudy(
        data_path=None,
        hyperparameters=HYPERPARAMS,
        model_factory=factory,
        n_splits=5,
        seed=42,
        validation_fraction=0.2,
        models_log=str(tmp_path / "docs.csv"),
        models_folder=str(tmp_path / "models"),
        **{'figures_folder': str(tmp_path / "figures"), **kwargs})


def test_build_and_train(tmp_path, fake_factory, housing_frame):
    study = make_study(tmp_path, fake_factory, repeats=2)
    assert str(study) == "ValidationStudy (not run)"

    model, summary, cv_result, test_metrics = study.build_and_train(df=housing_frame)

    # 2 fraction + 2 holdout + 5 folds + 1 final retrain
    assert len(fake_factory.models) == 10
    assert list(summary['strategy']) == list(STRATEGIES)
    assert list(summary['runs']) == [2, 2, 5]
    assert (summary['best_epoch'] == 3).all()
    assert (summary['val_loss_var'] >= 0).all()

    assert cv_result.best.epoch == 3
    assert model is fake_factory.models[-1]
    assert model.fit_calls[0]['epochs'] == 3
    assert set(test_metrics) == {'loss', 'mae'}
    assert "Best epoch: 3" in str(study)

    assert os.path.exists(os.path.join(tmp_path, "models", study.model_name + ".keras"))
    assert os.path.exists(os.path.join(tmp_path, "models", study.model_name + "_scaler.pkl"))
    assert os.path.exists(os.path.join(tmp_path, "figures", "validation_loss_curves.png"))
    assert os.path.exists(os.path.join(tmp_path, "figures", "validation_loss_spread.png"))


def test_fraction_strategy_uses_trailing_fraction(tmp_path, fake_factory, housing_frame):
    study = make_study(tmp_path, fake_factory, figures_folder=None)
    study.build_and_train(df=housing_frame)

    n_train = len(study.train.y)
    fraction_call = fake_factory.models[0].fit_calls[0]
    holdout_call = fake_factory.models[1].fit_calls[0]
    assert fraction_call['n_val'] == int(n_train * 0.2)
    assert holdout_call['n_val'] + holdout_call['n_train'] == n_train
    assert not os.path.exists(tmp_path / "figures")


def test_log_appends_runs(tmp_path, fake_factory, housing_frame):
    for _ in range(2):
        make_study(tmp_path, type(fake_factory)(), figures_folder=None).build_and_train(df=housing_frame)

    log = pd.read_csv(tmp_path / "docs.csv")
    assert len(log) == 2
    assert (log['best_epoch'] == 3).all()
    assert {'fraction_val_loss_mean', 'holdout_val_loss_std', 'kfold_best_epoch',
            'test_loss', 'test_mae'} <= set(log.columns)


def test_records_are_tagged_by_strategy(tmp_path, fake_factory, housing_frame):
    study = make_study(tmp_path, fake_factory, figures_folder=None)
    study.build_and_train(df=housing_frame)

    counts = study.records.groupby('strategy').size()
    per_run = HYPERPARAMS['epochs'] * 2 * 2
    assert counts['fraction'] == per_run
    assert counts['holdout'] == per_run
    assert counts['kfold'] == 5 * per_run


def test_verbose_progress(tmp_path, fake_factory, housing_frame, capsys):
    make_study(tmp_path, fake_factory, figures_folder=None).build_and_train(df=housing_frame, v=True)
    out = capsys.readouterr().out
    assert "[INFO] Preparing data..." in out
    assert "[INFO] Fold 5/5 done" in out
    assert "[INFO] Retraining for 3 epochs..." in out


def test_study_only_uses_fit_with_validation_data(tmp_path, housing_frame):
    class ValidationDataModel:
        """Accepts exactly the fit/evaluate signature the cross-validator relies on."""

        def __init__(self):
            self.val_sizes = []

        def fit(self, train_X, train_y, val_X, val_y, epochs, batch_size, schedule_policy):
            self.val_sizes.append(len(val_y))
            return {'loss': [1.0] * epochs, 'val_loss': [2.0 - 0.1 * e for e in range(epochs)]}

        def evaluate(self, test_X, test_y):
            return {'loss': 1.0, 'mae': 1.0}

        def save(self, filepath):
            open(filepath, 'w').close()

    models = []

    def factory():
        models.append(ValidationDataModel())
        return models[-1]

    study = make_study(tmp_path, factory, figures_folder=None)
    study.build_and_train(df=housing_frame)

    n_train = len(study.train.y)
    assert models[0].val_sizes == [int(n_train * 0.2)]
    assert study.cv_result.best.epoch == HYPERPARAMS['epochs']


def test_default_factory_builds_keras_model(tmp_path, housing_frame):
    from house_cv.DNN import HousePriceDNN

    study = make_study(tmp_path, None, figures_folder=None)
    study._load_data(housing_frame)
    model = study.model_factory()
    assert isinstance(model, HousePriceDNN)
    assert model.num_features == study.train.X.shape[1]
