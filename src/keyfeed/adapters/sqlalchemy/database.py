"""Engine and session lifecycle for the SQLAlchemy adapters."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from .mappings import create_tables

if TYPE_CHECKING:
    from sqlalchemy import Table
    from sqlalchemy.engine import Engine


class StartupError(RuntimeError):
    """Raised when a database is used before startup or after shutdown."""


@dataclass(slots=True)
class SqlAlchemyDatabase:
    """One engine plus its session factory.

    Each local store (pointer cache, record store) owns its own database so
    that they can live in separate files.
    """

    name: str
    _engine: Engine | None = None
    _session_factory: sessionmaker[Session] | None = None

    @property
    def engine(self) -> Engine | None:
        return self._engine

    @engine.setter
    def engine(self, value: Engine | None) -> None:
        self._session_factory = None
        self._engine = value

    @property
    def is_started(self) -> bool:
        return self._engine is not None

    @property
    def session_factory(self) -> sessionmaker[Session]:
        if self._engine is None:
            raise StartupError(
                f"Database {self.name!r} not initialised. Call startup() before opening sessions."
            )
        if self._session_factory is None:
            self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)
        return self._session_factory

    def startup(
        self,
        *tables: Table,
        engine: Engine | None = None,
        database_uri: str | None = None,
        force: bool = False,
    ) -> SqlAlchemyDatabase:
        """Bind an engine and make sure ``tables`` exist."""

        if self._engine is not None and not force:
            raise StartupError(
                f"Database {self.name!r} already initialised. Pass force=True to reconfigure."
            )
        if engine is None and database_uri is None:
            raise StartupError(f"Database {self.name!r} needs an engine or a database URI")
        resolved_engine = engine or create_engine(database_uri or "", future=True)
        create_tables(resolved_engine, *tables)
        self.engine = resolved_engine
        return self

    def shutdown(self) -> None:
        """Dispose the managed engine and reset state."""

        if self._engine is not None:
            self._engine.dispose()
        self.engine = None
