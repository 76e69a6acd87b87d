"""Liquidation bot for paged lending markets."""

__version__ = "0.1.0"
