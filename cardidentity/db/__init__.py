from cardidentity.db.database import create_engine, create_session_factory, drop_db, init_db
from cardidentity.db.store import CardStore, format_bytes

__all__ = [
    "CardStore",
    "create_engine",
    "create_session_factory",
    "drop_db",
    "format_bytes",
    "init_db",
]
