"""Behavioral emotion inference with online retraining."""

__version__ = "0.1.0"
