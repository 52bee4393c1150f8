import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from pydantic import ValidationError
from sqlalchemy import create_engine, delete, inspect
from sqlalchemy.engine import Connection
from sqlalchemy.engine.reflection import Inspector
from sqlalchemy.exc import CompileError, SQLAlchemyError
from sqlalchemy.pool import NullPool
from sqlmodel import Session, select

from querydesk.app.core.config import settings
from querydesk.app.core.dialects import build_url, connect_args, database_kind, get_dialect
from querydesk.app.core.exceptions import SchemaDiscoveryError
from querydesk.app.core.security import error_message
from querydesk.app.models.datasource import DataSource
from querydesk.app.models.schema import ColumnDescriptor, ForeignKeyDescriptor, SchemaDocument, TableDescriptor
from querydesk.app.models.schema_cache import SchemaCache
from querydesk.app.services import credentials as credential_service

logger = logging.getLogger(__name__)


def _type_name(column_type, conn: Connection) -> str:
    try:
        return column_type.compile(dialect=conn.dialect)
    except CompileError:
        # Types the dialect cannot render (e.g. NullType for undeclared SQLite columns)
        return type(column_type).__name__

def _column_size(column_type) -> Optional[int]:
    size = getattr(column_type, "length", None)
    if size is None:
        size = getattr(column_type, "precision", None)
    return size if isinstance(size, int) else None

def _describe_columns(inspector: Inspector, conn: Connection, table: str, schema: Optional[str]) -> List[ColumnDescriptor]:
    columns = []
    for col in inspector.get_columns(table, schema=schema):
        default = col.get("default")
        columns.append(ColumnDescriptor(
            name=col["name"],
            type=_type_name(col["type"], conn),
            size=_column_size(col["type"]),
            nullable=bool(col.get("nullable", True)),
            default_value=str(default) if default is not None else None,
        ))
    return columns

def _describe_foreign_keys(inspector: Inspector, table: str, schema: Optional[str]) -> List[ForeignKeyDescriptor]:
    # One descriptor per column pair, as the driver yields composite keys
    foreign_keys = []
    for fk in inspector.get_foreign_keys(table, schema=schema):
        for local, remote in zip(fk.get("constrained_columns") or [], fk.get("referred_columns") or []):
            foreign_keys.append(ForeignKeyDescriptor(
                column_name=local,
                referenced_table=fk["referred_table"],
                referenced_column=remote,
            ))
    return foreign_keys

def _describe_table(inspector: Inspector, conn: Connection, table: str, kind: str, schema: Optional[str]) -> TableDescriptor:
    if kind == "VIEW":
        return TableDescriptor(name=table, type=kind, columns=_describe_columns(inspector, conn, table, schema))
    pk = inspector.get_pk_constraint(table, schema=schema) or {}
    return TableDescriptor(
        name=table,
        type=kind,
        columns=_describe_columns(inspector, conn, table, schema),
        primary_keys=list(pk.get("constrained_columns") or []),
        foreign_keys=_describe_foreign_keys(inspector, table, schema),
    )

def discover_schema(data_source: DataSource, store=None) -> SchemaDocument:
    """
    Connect once and walk the vendor metadata for tables, columns and keys.
    Tables are described one after another on the same connection; any failure
    aborts the whole discovery.
    """
    dialect = get_dialect(data_source.database_type)
    creds = (store or credential_service.credential_store).resolve(data_source)
    schema = data_source.database_name if dialect.database_is_schema else None

    engine = None
    try:
        engine = create_engine(
            build_url(data_source, creds.username, creds.password),
            poolclass=NullPool,
            connect_args=connect_args(data_source.database_type, settings.PROBE_TIMEOUT_SECONDS),
        )
        with engine.connect() as conn:
            inspector = inspect(conn)
            tables = [
                _describe_table(inspector, conn, name, "TABLE", schema)
                for name in inspector.get_table_names(schema=schema)
            ]
            if settings.SCHEMA_INCLUDE_VIEWS:
                tables.extend(
                    _describe_table(inspector, conn, name, "VIEW", schema)
                    for name in inspector.get_view_names(schema=schema)
                )
    except ImportError as e:
        raise SchemaDiscoveryError(
            f"Failed to discover schema: {dialect.display_name} driver ({dialect.driver_package}) not installed on server."
        ) from e
    except (SQLAlchemyError, ValueError) as e:
        message = error_message(e, secrets=(creds.password,))
        logger.error(f"Failed to discover schema for data source: {data_source.id}: {message}")
        raise SchemaDiscoveryError(f"Failed to discover schema: {message}") from e
    finally:
        if engine is not None:
            engine.dispose()

    logger.info(f"Schema discovery completed for data source: {data_source.id} ({len(tables)} tables)")
    return SchemaDocument(
        database_type=database_kind(data_source.database_type).value,
        database_name=data_source.database_name,
        tables=tables,
        discovered_at=datetime.utcnow(),
    )


class SchemaCacheStore:
    """
    Durable schema cache keyed by data source id.

    Operations on one data source are serialized by a lock of their own; different
    data sources never share a lock. Each key also carries a generation number that
    `invalidate` bumps, so a discovery started before an invalidation cannot write
    its result back afterwards.
    """

    def __init__(self, ttl: Optional[timedelta] = None, clock: Callable[[], datetime] = datetime.utcnow):
        self._ttl = ttl
        self._clock = clock
        self._locks: Dict[int, threading.Lock] = {}
        self._generations: Dict[int, int] = {}
        self._registry_lock = threading.Lock()

    @property
    def ttl(self) -> timedelta:
        return self._ttl if self._ttl is not None else timedelta(seconds=settings.SCHEMA_CACHE_TTL_SECONDS)

    def _lock_for(self, data_source_id: int) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(data_source_id)
            if lock is None:
                lock = self._locks[data_source_id] = threading.Lock()
            return lock

    def generation(self, data_source_id: int) -> int:
        with self._lock_for(data_source_id):
            return self._generations.get(data_source_id, 0)

    def get(self, session: Session, data_source_id: int) -> Optional[SchemaDocument]:
        with self._lock_for(data_source_id):
            entry = session.exec(
                select(SchemaCache)
                .where(SchemaCache.data_source_id == data_source_id)
                .where(SchemaCache.expires_at > self._clock())
            ).first()
            if entry is None:
                return None
            try:
                return SchemaDocument.model_validate_json(entry.schema_data)
            except ValidationError as e:
                logger.error(f"Failed to parse cached schema for data source {data_source_id}, dropping it: {e}")
                self._delete(session, data_source_id)
                session.commit()
                return None

    def put(
        self,
        session: Session,
        data_source_id: int,
        document: SchemaDocument,
        ttl: Optional[timedelta] = None,
        generation: Optional[int] = None,
    ) -> bool:
        """
        Replace the entry for a data source. Returns False when nothing was cached:
        the generation is stale, or the document could not be serialized.
        """
        with self._lock_for(data_source_id):
            if generation is not None and generation != self._generations.get(data_source_id, 0):
                logger.info(f"Discarding schema for data source {data_source_id}: invalidated during discovery")
                return False

            self._delete(session, data_source_id)
            try:
                payload = document.model_dump_json()
            except ValueError as e:
                logger.error(f"Failed to serialize schema for data source {data_source_id}: {e}")
                session.commit()
                return False

            now = self._clock()
            session.add(SchemaCache(
                data_source_id=data_source_id,
                schema_data=payload,
                cached_at=now,
                expires_at=now + (ttl or self.ttl),
            ))
            session.commit()
            logger.info(f"Schema cached for data source: {data_source_id}")
            return True

    def invalidate(self, session: Session, data_source_id: int) -> None:
        with self._lock_for(data_source_id):
            self._generations[data_source_id] = self._generations.get(data_source_id, 0) + 1
            self._delete(session, data_source_id)
            session.commit()
            logger.info(f"Cache cleared for data source: {data_source_id}")

    def _delete(self, session: Session, data_source_id: int) -> None:
        session.exec(delete(SchemaCache).where(SchemaCache.data_source_id == data_source_id))

schema_cache = SchemaCacheStore()


def get_schema(session: Session, data_source: DataSource, store=None) -> SchemaDocument:
    """Cached schema when one is still valid, otherwise a fresh discovery."""
    cached = schema_cache.get(session, data_source.id)
    if cached is not None:
        logger.info(f"Returning cached schema for data source: {data_source.id}")
        return cached

    logger.info(f"Cache miss - fetching fresh schema for data source: {data_source.id}")
    generation = schema_cache.generation(data_source.id)
    # Re-read in a new transaction: details committed before that generation are the ones used
    session.commit()
    session.refresh(data_source)
    document = discover_schema(data_source, store=store)
    schema_cache.put(session, data_source.id, document, generation=generation)
    return document

def clear_schema_cache(session: Session, data_source_id: int) -> None:
    schema_cache.invalidate(session, data_source_id)
