"""Offline batch request/result files."""
