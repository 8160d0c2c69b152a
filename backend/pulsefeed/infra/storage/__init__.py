"""Local key-value storage for read-state records."""
