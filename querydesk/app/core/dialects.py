"""
Vendor table for the supported database kinds.

Every call site that needs a connection (prober, introspector, executor) resolves it
through this module, so connection grammar and defaults live in exactly one place.
"""
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional, Union

from sqlalchemy.engine import URL

from querydesk.app.core.config import settings
from querydesk.app.core.exceptions import UnsupportedDatabaseType


class DatabaseType(str, Enum):
    MYSQL = "MYSQL"
    POSTGRESQL = "POSTGRESQL"
    SQLSERVER = "SQLSERVER"
    ORACLE = "ORACLE"


@dataclass(frozen=True)
class Dialect:
    display_name: str
    drivername: str  # SQLAlchemy dialect+driver
    driver_package: str
    default_port: int
    connect_timeout_arg: str
    base_params: Callable[[], Dict[str, str]]
    tls_params: Callable[[bool], Dict[str, str]]
    # MySQL has no schema level below the database
    database_is_schema: bool = False
    supports_limit_clause: bool = False


def _mysql_base() -> Dict[str, str]:
    return {"charset": "utf8mb4", "init_command": "SET time_zone = '+00:00'"}


def _mysql_tls(enabled: bool) -> Dict[str, str]:
    # Any ssl_* key makes SQLAlchemy hand PyMySQL an ssl dict, which turns TLS on
    return {"ssl_check_hostname": "false"} if enabled else {}


def _postgres_tls(enabled: bool) -> Dict[str, str]:
    return {"sslmode": "require" if enabled else "disable"}


def _mssql_base() -> Dict[str, str]:
    return {"driver": settings.MSSQL_ODBC_DRIVER}


def _mssql_tls(enabled: bool) -> Dict[str, str]:
    if enabled:
        return {"Encrypt": "yes", "TrustServerCertificate": "yes"}
    return {"Encrypt": "no"}


def _no_params(*_args) -> Dict[str, str]:
    return {}


DIALECTS: Dict[DatabaseType, Dialect] = {
    DatabaseType.MYSQL: Dialect(
        display_name="MySQL",
        drivername="mysql+pymysql",
        driver_package="pymysql",
        default_port=3306,
        connect_timeout_arg="connect_timeout",
        base_params=_mysql_base,
        tls_params=_mysql_tls,
        database_is_schema=True,
        supports_limit_clause=True,
    ),
    DatabaseType.POSTGRESQL: Dialect(
        display_name="PostgreSQL",
        drivername="postgresql+psycopg2",
        driver_package="psycopg2",
        default_port=5432,
        connect_timeout_arg="connect_timeout",
        base_params=_no_params,
        tls_params=_postgres_tls,
        supports_limit_clause=True,
    ),
    DatabaseType.SQLSERVER: Dialect(
        display_name="SQL Server",
        drivername="mssql+pyodbc",
        driver_package="pyodbc",
        default_port=1433,
        connect_timeout_arg="timeout",
        base_params=_mssql_base,
        tls_params=_mssql_tls,
    ),
    DatabaseType.ORACLE: Dialect(
        display_name="Oracle",
        drivername="oracle+oracledb",
        driver_package="oracledb",
        default_port=1521,
        connect_timeout_arg="tcp_connect_timeout",
        base_params=_no_params,
        tls_params=_no_params,
    ),
}


def database_kind(database_type: Union[DatabaseType, str]) -> DatabaseType:
    try:
        return DatabaseType(database_type.upper() if isinstance(database_type, str) else database_type)
    except ValueError:
        raise UnsupportedDatabaseType(f"Unsupported database type: {database_type}") from None


def get_dialect(database_type: Union[DatabaseType, str]) -> Dialect:
    return DIALECTS[database_kind(database_type)]


def default_port(database_type: Union[DatabaseType, str]) -> int:
    return get_dialect(database_type).default_port


def parse_connection_params(raw: Optional[str]) -> Dict[str, str]:
    """
    Decode the free-form connection parameters stored with a data source.
    :param raw: JSON object text, or None
    :return: Parameter names mapped to their string values
    """
    if not raw or not raw.strip():
        return {}
    params = json.loads(raw)
    if not isinstance(params, dict):
        raise ValueError("connection_params must be a JSON object")
    return {str(key): str(value) for key, value in params.items()}


def _query(dialect: Dialect, ssl_enabled: bool, connection_params: Optional[str]) -> Dict[str, str]:
    query = dialect.base_params()
    query.update(dialect.tls_params(bool(ssl_enabled)))
    query.update(parse_connection_params(connection_params))
    return query


def build_connection_string(
    database_type: Union[DatabaseType, str],
    host: str,
    port: Optional[int],
    database_name: str,
    ssl_enabled: bool = False,
    connection_params: Optional[str] = None,
) -> str:
    """Credential-free connection URL in the vendor's SQLAlchemy grammar."""
    dialect = get_dialect(database_type)
    url = URL.create(
        dialect.drivername,
        host=host,
        port=port,
        database=database_name,
        query=_query(dialect, ssl_enabled, connection_params),
    )
    return url.render_as_string(hide_password=False)


def build_url(data_source: Any, username: Optional[str], password: Optional[str]) -> URL:
    """Connection URL for a stored data source, with credentials attached."""
    dialect = get_dialect(data_source.database_type)
    return URL.create(
        dialect.drivername,
        username=username,
        password=password,
        host=data_source.host,
        port=data_source.port,
        database=data_source.database_name,
        query=_query(dialect, data_source.ssl_enabled, data_source.connection_params),
    )


def connect_args(
    database_type: Union[DatabaseType, str],
    connect_timeout: int,
    statement_timeout: Optional[int] = None,
) -> Dict[str, Any]:
    dialect = get_dialect(database_type)
    args: Dict[str, Any] = {dialect.connect_timeout_arg: connect_timeout}
    if statement_timeout and dialect.drivername == "mysql+pymysql":
        # PyMySQL has no statement timeout; a socket read timeout is the closest bound
        args["read_timeout"] = statement_timeout
    return args
