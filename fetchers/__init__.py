# fetchers/__init__.py
from .openrouter import FetchError, fetch_models

__all__ = ["FetchError", "fetch_models"]
