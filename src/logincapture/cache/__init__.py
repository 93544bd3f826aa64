"""Community cache client (reporting interface only)."""
