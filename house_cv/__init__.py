"""
House price model validation: fraction split, held-out set and k-fold
cross-validation of a Keras regressor.
"""

__version__ = "1.0.0"
