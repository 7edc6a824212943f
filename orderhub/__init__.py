"""Order storage service core: domain model, cache, message consumer, app runner and SQL repository."""

__version__ = "0.1.0"
__all__ = ["__version__"]