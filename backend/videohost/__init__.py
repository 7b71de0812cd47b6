"""Resumable video uploads to interchangeable hosting providers."""

__version__ = "0.1.0"
