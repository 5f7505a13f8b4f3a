"""Marketplace service - bronze-task postings, applications, escrow and ratings."""

__version__ = "0.1.0"
