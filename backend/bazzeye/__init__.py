"""Bazzeye host control dashboard backend."""
