"""Shared core for the parking reservation Lambda functions."""

__version__ = "0.1.0"
