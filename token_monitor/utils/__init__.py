"""Utility helpers for Token Monitor."""
