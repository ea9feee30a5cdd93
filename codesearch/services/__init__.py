"""Service layer for ai-code-search."""
