"""Presentation layer for Token Monitor."""
