"""Monitoring helpers for the comment pipeline."""
