from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from sqlalchemy import String, create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.sql.functions import GenericFunction


class Base(DeclarativeBase):
    pass


def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def _is_memory_sqlite(url: str) -> bool:
    if not _is_sqlite(url):
        return False
    return ":memory:" in url or url.rstrip("/") in {"sqlite:", "sqlite+pysqlite:"}


def _ensure_sqlite_dir(url: str) -> None:
    database = make_url(url).database
    if database:
        Path(database).resolve().parent.mkdir(parents=True, exist_ok=True)


class casefold(GenericFunction):
    """Unicode case folding; SQLite's own lower() only folds ASCII."""

    type = String()
    inherit_cache = True


@compiles(casefold)
def _compile_casefold(element, compiler, **kw):
    return f"lower({compiler.process(element.clauses, **kw)})"


@compiles(casefold, "sqlite")
def _compile_casefold_sqlite(element, compiler, **kw):
    return f"casefold({compiler.process(element.clauses, **kw)})"


def _casefold(value):
    return value.casefold() if isinstance(value, str) else value


def register_sqlite_functions(dbapi_conn) -> None:
    dbapi_conn.create_function("casefold", 1, _casefold, deterministic=True)


def _enable_sqlite_pragmas(dbapi_conn, _record):
    register_sqlite_functions(dbapi_conn)
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()


def _enable_foreign_keys(dbapi_conn, _record):
    register_sqlite_functions(dbapi_conn)
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()


class Database:
    """Store handle owning the engine and the session factory.

    Opened once at application startup and closed at shutdown; nothing in the
    project reaches for a module-level engine.
    """

    def __init__(self, url: str) -> None:
        self.url = url
        self._engine: Optional[Engine] = None
        self._sessionmaker: Optional[sessionmaker] = None

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise RuntimeError("Database is not open")
        return self._engine

    def open(self) -> "Database":
        if self._engine is not None:
            return self
        connect_args: dict[str, object] = {}
        kwargs: dict[str, object] = {}
        if _is_sqlite(self.url):
            connect_args["check_same_thread"] = False
        if _is_sqlite(self.url) and not _is_memory_sqlite(self.url):
            _ensure_sqlite_dir(self.url)
        if _is_memory_sqlite(self.url):
            # every session must see the same in-memory database
            kwargs["poolclass"] = StaticPool

        eng = create_engine(self.url, connect_args=connect_args, **kwargs)
        if _is_memory_sqlite(self.url):
            event.listen(eng, "connect", _enable_foreign_keys)
        elif _is_sqlite(self.url):
            event.listen(eng, "connect", _enable_sqlite_pragmas)

        self._engine = eng
        self._sessionmaker = sessionmaker(
            bind=eng, autoflush=False, expire_on_commit=False
        )
        return self

    def create_schema(self) -> None:
        import models  # noqa: F401  registers the mapped tables

        Base.metadata.create_all(self.engine)

    def session(self) -> Session:
        if self._sessionmaker is None:
            raise RuntimeError("Database is not open")
        return self._sessionmaker()

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        session = self.session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
        self._engine = None
        self._sessionmaker = None
