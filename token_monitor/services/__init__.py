"""Monitoring services for Token Monitor."""
