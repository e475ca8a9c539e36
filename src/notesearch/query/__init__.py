"""Query parsing and proximity matching."""
