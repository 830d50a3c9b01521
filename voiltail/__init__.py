"""Voiltail: parallel multi-model querying with alignment scoring and synthesis."""

__version__ = "0.3.0"
