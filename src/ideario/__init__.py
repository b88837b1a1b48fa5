"""Ideario: idea lifecycle, engagement and definition tracking."""

__version__ = "0.1.0"
