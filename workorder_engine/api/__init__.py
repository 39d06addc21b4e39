from .app import app, get_engine

__all__ = ["app", "get_engine"]
