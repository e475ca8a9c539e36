"""Note loading."""
