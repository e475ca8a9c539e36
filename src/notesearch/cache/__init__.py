"""LLM response cache."""
