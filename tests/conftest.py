import matplotlib

matplotlib.use("Agg")

import numpy as np
import pandas as pd
import pytest


class FakeModel:
    """
    Stand-in for HousePriceDNN. Reports a validation loss curve with its
    minimum at epoch 3, scaled by how hard the validation rows are to predict.
    """

    def __init__(self):
        self.fit_calls = []
        self.train_mean = None

    def fit(self, train_X, train_y, val_X=None, val_y=None, epochs=100, batch_size=32,
            schedule_policy=None, validation_split=None):
        if val_X is None:
            n_val = int(len(train_y) * validation_split)
            train_X, val_X = train_X[:-n_val], train_X[-n_val:]
            train_y, val_y = train_y[:-n_val], train_y[-n_val:]

        self.fit_calls.append({
            'n_train': len(train_y), 'n_val': len(val_y), 'epochs': epochs,
            'batch_size': batch_size, 'schedule_policy': schedule_policy,
        })
        self.train_mean = float(np.mean(train_y))
        base_train = float(np.mean((train_y - self.train_mean) ** 2)) + 1.0
        base_val = float(np.mean((val_y - self.train_mean) ** 2)) + 1.0

        epoch = np.arange(1, epochs + 1)
        return {
            'loss': list(base_train / epoch),
            'mae': list(np.sqrt(base_train / epoch)),
            'val_loss': list(base_val * (1 + (epoch - 3) ** 2 / 10)),
            'val_mae': list(np.sqrt(base_val * (1 + (epoch - 3) ** 2 / 10))),
        }

    def evaluate(self, test_X, test_y):
        errors = np.asarray(test_y) - self.train_mean
        return {'loss': float(np.mean(errors ** 2)), 'mae': float(np.mean(np.abs(errors)))}

    def save(self, filepath):
        with open(filepath, 'w') as f:
            f.write("fake model")


class FakeFactory:
    def __init__(self):
        self.models = []

    def __call__(self):
        model = FakeModel()
        self.models.append(model)
        return model


@pytest.fixture
def fake_factory():
    return FakeFactory()


@pytest.fixture
def regression_data():
    rng = np.random.default_rng(0)
    X = rng.normal(size=(1000, 4))
    y = X @ np.array([1.5, -2.0, 0.5, 3.0]) + rng.normal(scale=0.1, size=1000)
    return X, y


@pytest.fixture
def housing_frame():
    rng = np.random.default_rng(1)
    n = 240
    area = rng.uniform(40, 200, size=n)
    rooms = rng.integers(1, 6, size=n).astype(float)
    district = rng.choice(['north', 'south', 'centre'], size=n)
    price = 1500 * area + 10000 * rooms + np.where(district == 'centre', 50000, 0) \
        + rng.normal(scale=5000, size=n)
    df = pd.DataFrame({'area': area, 'rooms': rooms, 'district': district, 'price': price})
    df.loc[[3, 17], 'rooms'] = np.nan
    return df
