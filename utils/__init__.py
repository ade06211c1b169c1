# utils/__init__.py
"""Shared helpers."""
