"""Dental clinic booking assistant."""

__version__ = "0.1.0"
