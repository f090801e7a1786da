"""Token-bucket rate limiting: in-memory and no-op stores and WSGI middleware."""

__version__ = "1.0.0"

__all__ = ["fasttime", "store", "noopstore", "memorystore", "httplimit"]