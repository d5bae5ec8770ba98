"""Harness for driving an external mongod-compatible server and asserting on protocol outcomes."""

from .__version__ import __version__

__all__ = ["__version__"]
