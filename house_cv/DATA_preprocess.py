import numpy as np
import pandas as pd
from sklearn.model_selection import train_test_split
from sklearn.preprocessing import StandardScaler

from house_cv.CrossValidator import make_dataset


class HousingDataPreparer:
    """
    Turns a raw housing table into numeric train and test datasets.

    Rows with missing values are dropped, categorical columns are one-hot
    encoded, the data is split into train/test sets and the features are
    standardised with a scaler fitted on the training rows only.
    """

    def __init__(self, data_path=None, target_column='price', test_size=0.2,
                 log_target=False, drop_columns=None, random_state=42):
        self.data_path = data_path
        self.target_column = target_column
        self.test_size = test_size
        self.log_target = log_target
        self.drop_columns = list(drop_columns or [])
        self.random_state = random_state

        self.scaler = StandardScaler()
        self.feature_names = None

    def load(self):
        """Read the CSV at data_path."""
        return pd.read_csv(self.data_path)

    def prepare(self, df=None):
        """
        Build (train, test) Datasets from a data frame, or from data_path when
        no frame is given.
        """
        if df is None:
            df = self.load()
        if self.target_column not in df.columns:
            raise KeyError(f"target column '{self.target_column}' not found")

        df = df.drop(columns=self.drop_columns).dropna()

        features = pd.get_dummies(df.drop(columns=[self.target_column]), dtype=float)
        self.feature_names = list(features.columns)

        X = features.values.astype(float)
        y = df[self.target_column].values.astype(float)
        if self.log_target:
            y = np.log1p(y)

        X_train, X_test, y_train, y_test = train_test_split(
            X, y, test_size=self.test_size, random_state=self.random_state)

        # Scaler sees the training rows only
        X_train = self.scaler.fit_transform(X_train)
        X_test = self.scaler.transform(X_test)

        return make_dataset(X_train, y_train), make_dataset(X_test, y_test)

    def inverse_target(self, y):
        """Map model outputs back to prices."""
        y = np.asarray(y, dtype=float)
        return np.expm1(y) if self.log_target else y
