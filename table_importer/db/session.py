import os
import socket
from contextlib import closing
from datetime import datetime

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url

from table_importer.core.config import settings

_engine = None


# Ports probed when the URL does not name one.
DEFAULT_PORTS = {"postgresql": 5432, "mysql": 3306, "mariadb": 3306}


def _report_connection_failure(exc: Exception) -> None:
    """Print what the importer was trying to reach when the first connection fails."""
    print(f"Warning: Could not connect to database: {exc}")
    print("Tables cannot be listed or imported into until the connection succeeds.")

    try:
        url = make_url(settings.database_url)
    except Exception as parse_error:  # pragma: no cover
        print(f"  DATABASE_URL is not a valid SQLAlchemy URL ({parse_error})")
        return

    backend = url.get_backend_name()
    print("  Target database:")
    print(f"    Backend: {backend} (driver: {url.get_driver_name() or 'default'})")
    print(f"    Database: {url.database}")
    print(f"    SKIP_DB_INIT: {os.getenv('SKIP_DB_INIT')!r}")

    if backend not in DEFAULT_PORTS:
        return

    host = url.host or "localhost"
    port = url.port or DEFAULT_PORTS[backend]
    print(f"    Server: {url.username or '(no user)'}@{host}:{port}")

    try:
        with closing(socket.create_connection((host, port), timeout=2)):
            print(f"    Socket check: ✅ {host}:{port} accepts connections, check credentials and database name")
    except OSError as socket_err:
        print(f"    Socket check: ❌ Unable to reach {host}:{port} ({socket_err})")


def _register_sqlite_functions(dbapi_connection, connection_record) -> None:
    """Give SQLite a NOW() so statement templates run unchanged."""
    dbapi_connection.create_function(
        "NOW", 0, lambda: datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    )


def prepare_engine(engine: Engine) -> Engine:
    """Attach dialect specific connection hooks to an engine."""
    if engine.dialect.name == "sqlite" and not event.contains(engine, "connect", _register_sqlite_functions):
        event.listen(engine, "connect", _register_sqlite_functions)
    return engine


def build_engine(database_url: str, **kwargs) -> Engine:
    return prepare_engine(create_engine(database_url, **kwargs))


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        try:
            _engine = build_engine(settings.database_url)
            if os.getenv("SKIP_DB_INIT") != "1":
                # Test connection eagerly so failures surface immediately.
                with _engine.connect() as conn:
                    conn.execute(text("SELECT 1"))
        except Exception as e:
            _report_connection_failure(e)
            # Create the engine anyway so callers can proceed (may still fail later).
            _engine = build_engine(settings.database_url)
    return _engine
