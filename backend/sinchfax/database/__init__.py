# sinchfax/database/__init__.py
from .db import Base, get_db, init_models, make_engine, make_session_factory, session_scope

__all__ = [
    "Base",
    "get_db",
    "init_models",
    "make_engine",
    "make_session_factory",
    "session_scope",
]
