"""Database infrastructure: ORM models and async session management."""
