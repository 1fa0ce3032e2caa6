from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, Optional

from neo4j import GraphDatabase
from neo4j.exceptions import AuthError, ServiceUnavailable, SessionExpired

from .config import (
    DEFAULT_NEO4J_DATABASE,
    DEFAULT_NEO4J_PASSWORD,
    DEFAULT_NEO4J_URI,
    DEFAULT_NEO4J_USERNAME,
    DRIVER_ACQUISITION_TIMEOUT,
    DRIVER_MAX_CONNECTION_LIFETIME,
    DRIVER_MAX_POOL_SIZE,
)
from .models import ConnectionConfig, RawGraphResult
from .normalizer import collect_entities

_CONNECTIVITY_ERRORS = (ServiceUnavailable, SessionExpired, AuthError)


class DatabaseError(RuntimeError):
    def __init__(self, message: str, *, kind: str = "query") -> None:
        super().__init__(message)
        self.kind = kind

    @property
    def is_connectivity(self) -> bool:
        return self.kind == "connectivity"


def _build_driver(config: ConnectionConfig):
    return GraphDatabase.driver(
        config.uri,
        auth=(config.username, config.password),
        max_connection_lifetime=DRIVER_MAX_CONNECTION_LIFETIME,
        max_connection_pool_size=DRIVER_MAX_POOL_SIZE,
        connection_acquisition_timeout=DRIVER_ACQUISITION_TIMEOUT,
    )


def default_config() -> ConnectionConfig:
    if not DEFAULT_NEO4J_URI:
        raise DatabaseError("Neo4j URI is not set", kind="connectivity")
    if not DEFAULT_NEO4J_USERNAME:
        raise DatabaseError("Neo4j username is not set", kind="connectivity")
    if not DEFAULT_NEO4J_PASSWORD:
        raise DatabaseError("Neo4j password is not set", kind="connectivity")
    return ConnectionConfig(
        uri=DEFAULT_NEO4J_URI,
        username=DEFAULT_NEO4J_USERNAME,
        password=DEFAULT_NEO4J_PASSWORD,
        database=DEFAULT_NEO4J_DATABASE,
    )


class ConnectionManager:
    """
    Owns the process-wide driver (and its connection pool) plus the config it was built from.
    - The driver is created lazily on first use and shared by every caller.
    - A request carrying a different config tears the driver down and rebuilds it (last writer wins).
    - Sessions are checked out per call and always closed before the call returns.
    """

    def __init__(
        self,
        config: Optional[ConnectionConfig] = None,
        *,
        driver_factory: Optional[Callable[[ConnectionConfig], Any]] = None,
    ) -> None:
        self._config = config
        self._driver = None
        self._driver_factory = driver_factory or _build_driver
        self._lock = threading.RLock()

    def __enter__(self) -> "ConnectionManager":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def config(self) -> Optional[ConnectionConfig]:
        return self._config

    @property
    def connected(self) -> bool:
        return self._driver is not None

    def _open(self, config: ConnectionConfig) -> None:
        driver = self._driver_factory(config)
        try:
            driver.verify_connectivity()
        except Exception as exc:
            try:
                driver.close()
            except Exception:
                pass
            self._driver = None
            self._config = None
            raise DatabaseError(f"Failed to connect to Neo4j: {exc}", kind="connectivity") from exc
        self._driver = driver
        self._config = config

    def reconfigure(self, config: ConnectionConfig) -> None:
        with self._lock:
            self.close()
            self._open(config)

    def driver(self, config: Optional[ConnectionConfig] = None):
        with self._lock:
            target = config or self._config or default_config()
            if self._driver is not None and target != self._config:
                self.reconfigure(target)
            elif self._driver is None:
                self._open(target)
            return self._driver

    def close(self) -> None:
        with self._lock:
            if self._driver is None:
                return
            try:
                self._driver.close()
            except Exception:
                pass
            finally:
                self._driver = None

    @contextmanager
    def session(self, config: Optional[ConnectionConfig] = None) -> Iterator[Any]:
        driver = self.driver(config)
        database = self._config.database if self._config else None
        session = driver.session(database=database) if database else driver.session()
        try:
            yield session
        finally:
            try:
                session.close()
            except Exception:
                pass

    def run(
        self,
        query: str,
        params: Optional[Dict[str, Any]] = None,
        *,
        config: Optional[ConnectionConfig] = None,
    ) -> RawGraphResult:
        if not query or not query.strip():
            raise DatabaseError("Database query failed: empty query")
        try:
            with self.session(config) as session:
                records = list(session.run(query, params or {}))
        except DatabaseError:
            raise
        except _CONNECTIVITY_ERRORS as exc:
            raise DatabaseError(f"Database query failed: {exc}", kind="connectivity") from exc
        except Exception as exc:
            message = getattr(exc, "message", None) or str(exc)
            raise DatabaseError(f"Database query failed: {message}") from exc
        return collect_entities(records)


__all__ = ["ConnectionManager", "DatabaseError", "default_config"]
