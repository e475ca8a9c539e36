"""Embedding model and cache."""
