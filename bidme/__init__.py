"""Sponsorship banner auctions run from repository issues."""

__version__ = "0.2.0"
