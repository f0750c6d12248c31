"""Data models for Token Monitor."""
