"""Task model, SQLite store and task mutations."""
