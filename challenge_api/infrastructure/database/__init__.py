"""Database layer: ORM models and async session management."""
