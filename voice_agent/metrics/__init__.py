"""Metrics collection."""
