"""Configuration and logging helpers for ttyio."""
