from sqlalchemy import create_engine as sa_create_engine
from sqlalchemy.pool import NullPool, StaticPool
from sqlmodel import Session, SQLModel, create_engine

from querydesk.app.core.dialects import DatabaseType
from querydesk.app.models.audit import AuditLog  # noqa: F401
from querydesk.app.models.datasource import DataSource
from querydesk.app.models.execution import QueryExecution  # noqa: F401
from querydesk.app.models.saved_query import SavedQuery  # noqa: F401
from querydesk.app.models.schema_cache import SchemaCache  # noqa: F401


def system_engine(url="sqlite://"):
    """System database holding data sources, cache entries, executions and audit rows."""
    if url == "sqlite://":
        engine = create_engine(url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    else:
        engine = create_engine(url, connect_args={"check_same_thread": False})
    SQLModel.metadata.create_all(engine)
    return engine


def engine_factory(target_url, seen=None):
    """Stand-in for create_engine that ignores the vendor URL and opens SQLite instead."""
    def factory(url, **kwargs):
        if seen is not None:
            seen.append((url, kwargs))
        return sa_create_engine(target_url, poolclass=NullPool)
    return factory


def add_data_source(engine, owner_id="admin", **fields) -> int:
    values = dict(
        name="warehouse",
        database_type=DatabaseType.MYSQL,
        host="db.local",
        port=3306,
        database_name="main",
        username="reader",
        password="s3cret",
    )
    values.update(fields)
    with Session(engine) as session:
        ds = DataSource(owner_id=owner_id, **values)
        session.add(ds)
        session.commit()
        return ds.id
