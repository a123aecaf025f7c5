from .registry import SessionRegistry
from .registry import build_engine
from .registry import default_engine_factory
from .registry import open_default_store

__all__ = [
    "SessionRegistry",
    "build_engine",
    "default_engine_factory",
    "open_default_store",
]
