"""Property graph: value types, storage protocols, PostgreSQL store and traversal."""
