"""Ideario core engines."""
