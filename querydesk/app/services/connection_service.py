import logging
import time
from datetime import datetime
from typing import Optional, Union

from pydantic import BaseModel
from sqlalchemy import create_engine
from sqlalchemy.engine import URL
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import NullPool
from sqlmodel import Session

from querydesk.app.core.config import settings
from querydesk.app.core.dialects import DatabaseType, build_url, connect_args, get_dialect
from querydesk.app.core.security import error_message
from querydesk.app.models.datasource import ConnectionStatus, DataSource
from querydesk.app.services import credentials as credential_service

logger = logging.getLogger(__name__)

class ConnectionTestResult(BaseModel):
    success: bool
    message: str
    response_time_ms: int

class _Target:
    """Unsaved connection details shaped like a DataSource row."""

    def __init__(self, database_type, host, port, database_name, ssl_enabled, connection_params):
        self.database_type = database_type
        self.host = host
        self.port = port
        self.database_name = database_name
        self.ssl_enabled = ssl_enabled
        self.connection_params = connection_params

def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)

def probe_connection(
    database_type: Union[DatabaseType, str],
    host: str,
    port: Optional[int],
    database_name: str,
    username: str,
    password: str,
    ssl_enabled: bool = False,
    connection_params: Optional[str] = None,
    timeout: Optional[int] = None,
) -> ConnectionTestResult:
    """
    Open one short-lived connection, ping it and close it.
    Connectivity problems come back as success=False, never as exceptions.
    """
    timeout = timeout or settings.PROBE_TIMEOUT_SECONDS
    dialect = get_dialect(database_type)
    started = time.perf_counter()
    engine = None
    try:
        target = _Target(database_type, host, port, database_name, ssl_enabled, connection_params)
        url: URL = build_url(target, username, password)
        logger.debug(f"Testing connection to: {url.render_as_string(hide_password=True)}")

        engine = create_engine(url, poolclass=NullPool, connect_args=connect_args(database_type, timeout))
        with engine.connect() as conn:
            if not conn.dialect.do_ping(conn.connection.dbapi_connection):
                raise ConnectionError("Connection validation failed")

        response_time = _elapsed_ms(started)
        logger.info(f"Connection test successful for {dialect.display_name} - Response time: {response_time}ms")
        return ConnectionTestResult(success=True, message="Connection successful", response_time_ms=response_time)

    except ImportError:
        return ConnectionTestResult(
            success=False,
            message=f"{dialect.display_name} driver ({dialect.driver_package}) not installed on server.",
            response_time_ms=_elapsed_ms(started),
        )
    except ValueError as e:
        return ConnectionTestResult(
            success=False,
            message=f"Invalid connection parameters: {e}",
            response_time_ms=_elapsed_ms(started),
        )
    except (SQLAlchemyError, ConnectionError) as e:
        message = error_message(e, secrets=(password,))
        logger.error(f"Connection test failed: {message}")
        return ConnectionTestResult(
            success=False,
            message=f"Connection failed: {message}",
            response_time_ms=_elapsed_ms(started),
        )
    finally:
        if engine is not None:
            engine.dispose()

def probe_data_source(session: Session, data_source: DataSource, store=None) -> ConnectionTestResult:
    """Probe a stored data source and record the outcome on it."""
    creds = (store or credential_service.credential_store).resolve(data_source)
    result = probe_connection(
        data_source.database_type,
        data_source.host,
        data_source.port,
        data_source.database_name,
        creds.username,
        creds.password,
        ssl_enabled=data_source.ssl_enabled,
        connection_params=data_source.connection_params,
    )

    data_source.status = ConnectionStatus.ACTIVE if result.success else ConnectionStatus.ERROR
    data_source.last_tested_at = datetime.utcnow()
    session.add(data_source)
    session.commit()
    session.refresh(data_source)

    logger.info(f"Connection test completed for data source: {data_source.id} - Success: {result.success}")
    return result
