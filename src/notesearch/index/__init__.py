"""Index storage, ranking and highlighting."""
