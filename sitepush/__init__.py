"""One-way SSH mirror deployment for static site trees."""

__version__ = "0.3.0"

__all__ = ["__version__"]
