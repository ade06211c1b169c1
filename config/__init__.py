# config/__init__.py
"""Driver configuration."""
