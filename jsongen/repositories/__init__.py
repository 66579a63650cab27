"""Data repositories."""
