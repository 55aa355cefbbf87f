"""Challenge API - phase timeline and lifecycle engine for competitive challenges."""

__version__ = "1.0.0"
