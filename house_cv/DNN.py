# -*- coding: utf-8 -*-
"""
DNN

Feed-forward Keras regressor for house prices, plus the factory that hands a
freshly initialised copy of the fixed architecture to every training run
(each cross-validation fold, the fraction split, the held-out split and the
final retraining).
"""

import datetime

import numpy as np
import tensorflow as tf
from tensorflow.keras.models import Sequential
from tensorflow.keras.layers import Input, Dense, Dropout, BatchNormalization
from tensorflow.keras.optimizers import Adam

SCHEDULE_POLICIES = (None, 'constant', 'reduce_on_plateau', 'exponential_decay')

DEFAULT_HYPERPARAMETERS = {
    'layer_sizes': [64, 64],
    'learning_rate': 1e-3,
    'epochs': 100,
    'batch_size': 32,
    'batch_norm': False,
    'activation': 'relu',
    'optimizer_class': Adam,
    'loss_function': 'mse',
    'use_early_stopping': False,
    'dropout_rate': None,
    'schedule_policy': None,
    'verbose': False,
}


class HousePriceDNN:
    """
    Compiled Keras Sequential model with a fit/evaluate interface that reports
    per-epoch loss and MAE for the training and validation data.
    """

    metric_names = ('loss', 'mae')

    def __init__(self, num_features, hyperparameters):
        """
        Parameters:
            num_features (int): Number of input columns.
            hyperparameters (dict): Same keys as DEFAULT_HYPERPARAMETERS; missing
                keys fall back to the defaults.
        """
        params = {**DEFAULT_HYPERPARAMETERS, **hyperparameters}
        self.num_features = num_features
        self.layer_sizes = params['layer_sizes']
        self.learning_rate = params['learning_rate']
        self.batch_norm = params['batch_norm']
        self.activation = params['activation']
        self.optimizer_class = params['optimizer_class']
        self.loss_function = params['loss_function']
        self.use_early_stopping = params['use_early_stopping']
        self.dropout_rate = params['dropout_rate']
        self.verbose = params['verbose']

        self.model = self._build_model()
        self.training_duration = None

    def _build_model(self):
        """Constructs the Keras model architecture based on the provided configuration."""
        model = Sequential()
        model.add(Input(shape=(self.num_features,)))

        for size in self.layer_sizes:
            model.add(Dense(size, activation=self.activation))
            if self.batch_norm:
                model.add(BatchNormalization())
            if self.dropout_rate is not None:
                model.add(Dropout(self.dropout_rate))

        model.add(Dense(1))  # Output layer

        optimizer = self.optimizer_class(learning_rate=self.learning_rate)
        model.compile(optimizer=optimizer, loss=self.loss_function, metrics=['mae'])
        return model

    def _callbacks(self, schedule_policy):
        if schedule_policy not in SCHEDULE_POLICIES:
            raise ValueError(f"unknown schedule policy: {schedule_policy}")

        callbacks = []
        if self.use_early_stopping:
            callbacks.append(tf.keras.callbacks.EarlyStopping(
                patience=10, restore_best_weights=True))

        if schedule_policy == 'reduce_on_plateau':
            callbacks.append(tf.keras.callbacks.ReduceLROnPlateau(
                monitor='val_loss', factor=0.5, patience=5, min_lr=1e-6))
        elif schedule_policy == 'exponential_decay':
            initial = self.learning_rate
            callbacks.append(tf.keras.callbacks.LearningRateScheduler(
                lambda epoch: initial * 0.95 ** epoch))
        return callbacks

    def fit(self, train_X, train_y, val_X=None, val_y=None, epochs=100, batch_size=32,
            schedule_policy=None, validation_split=None):
        """
        Train the model, validating after every epoch.

        Validation uses (val_X, val_y) when given, otherwise the trailing
        `validation_split` fraction of the training rows.

        Returns:
            dict: history keys ('loss', 'mae', 'val_loss', 'val_mae') to per-epoch values.
        """
        if val_X is not None:
            validation = {'validation_data': (val_X, np.ravel(val_y))}
        elif validation_split is not None:
            validation = {'validation_split': validation_split}
        else:
            raise ValueError("either validation data or a validation_split is required")

        start = datetime.datetime.now()
        history = self.model.fit(
            train_X, np.ravel(train_y),
            epochs=epochs,
            batch_size=batch_size,
            callbacks=self._callbacks(schedule_policy),
            verbose=int(self.verbose),
            **validation)
        self.training_duration = (datetime.datetime.now() - start).total_seconds()

        return {key: [float(v) for v in values]
                for key, values in history.history.items()
                if key.replace('val_', '', 1) in self.metric_names}

    def evaluate(self, test_X, test_y):
        """Loss and MAE on unseen data."""
        scores = self.model.evaluate(test_X, np.ravel(test_y), verbose=0, return_dict=True)
        return {name: float(scores[name]) for name in self.metric_names}

    def predict(self, X):
        return self.model.predict(X, verbose=0).ravel()

    def save(self, filepath):
        self.model.save(filepath)


def make_model_factory(num_features, hyperparameters, seed=None):
    """
    Return a zero-argument constructor of untrained HousePriceDNN models.

    With a seed, every constructed model starts from the same initial weights.
    """
    def construct():
        if seed is not None:
            tf.keras.utils.set_random_seed(seed)
        return HousePriceDNN(num_features, hyperparameters)

    return construct
