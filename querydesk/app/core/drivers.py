"""
Per-driver behaviour that SQLAlchemy does not unify: statement timeouts, timeout
classification and result-set type names. Keyed by the SQLAlchemy dialect name of
the live connection.
"""
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

from pymysql.constants import FIELD_TYPE
from sqlalchemy import bindparam, text
from sqlalchemy.engine import Connection

logger = logging.getLogger(__name__)

_MYSQL_TYPE_NAMES: Dict[int, str] = {}
for _name, _code in vars(FIELD_TYPE).items():
    if _name.isupper():
        _MYSQL_TYPE_NAMES.setdefault(_code, _name)

_PG_TYPE_QUERY = text(
    "SELECT oid, format_type(oid, NULL) FROM pg_catalog.pg_type WHERE oid IN :oids"
).bindparams(bindparam("oids", expanding=True))


def _dbapi_connection(connection: Connection):
    return connection.connection.dbapi_connection


def _postgres_timeout(connection: Connection, seconds: int) -> None:
    connection.exec_driver_sql(f"SET statement_timeout = {int(seconds * 1000)}")


def _mssql_timeout(connection: Connection, seconds: int) -> None:
    _dbapi_connection(connection).timeout = int(seconds)


def _oracle_timeout(connection: Connection, seconds: int) -> None:
    _dbapi_connection(connection).call_timeout = int(seconds * 1000)


def _sqlite_timeout(connection: Connection, seconds: int) -> None:
    deadline = time.monotonic() + seconds
    _dbapi_connection(connection).set_progress_handler(
        lambda: 1 if time.monotonic() > deadline else 0, 1000
    )


_STATEMENT_TIMEOUTS: Dict[str, Callable[[Connection, int], None]] = {
    "postgresql": _postgres_timeout,
    "mssql": _mssql_timeout,
    "oracle": _oracle_timeout,
    "sqlite": _sqlite_timeout,
    # mysql: bounded by the PyMySQL read_timeout given at connect time
}


def apply_statement_timeout(connection: Connection, seconds: Optional[int]) -> None:
    if not seconds:
        return
    hook = _STATEMENT_TIMEOUTS.get(connection.dialect.name)
    if hook is None:
        logger.debug(f"No statement timeout hook for dialect {connection.dialect.name}")
        return
    hook(connection, seconds)


def is_timeout(error: BaseException, dialect_name: str) -> bool:
    """
    Tell a statement timeout apart from other driver errors.
    :param error: SQLAlchemy DBAPIError or the raw driver exception
    :param dialect_name: SQLAlchemy dialect name of the connection that raised it
    """
    orig = getattr(error, "orig", None) or error
    args = getattr(orig, "args", ()) or ()
    message = str(orig)
    lowered = message.lower()

    if dialect_name == "postgresql":
        return getattr(orig, "pgcode", None) == "57014"
    if dialect_name == "mssql":
        return bool(args) and args[0] == "HYT00"
    if dialect_name == "oracle":
        return any(code in message for code in ("DPI-1067", "ORA-01013", "ORA-03156"))
    if dialect_name == "mysql":
        return (bool(args) and args[0] == 3024) or "timed out" in lowered
    if dialect_name == "sqlite":
        return "interrupted" in lowered
    return "timed out" in lowered or "timeout" in lowered


def _generic_type_name(type_code: Any) -> Optional[str]:
    if type_code is None:
        return None
    name = getattr(type_code, "name", None) or getattr(type_code, "__name__", None)
    return str(name or type_code)


def _oracle_type_name(type_code: Any) -> Optional[str]:
    name = _generic_type_name(type_code)
    if name and name.startswith("DB_TYPE_"):
        return name[len("DB_TYPE_"):]
    return name


def column_type_names(connection: Connection, description: Sequence[Sequence[Any]]) -> List[Optional[str]]:
    """Vendor type name for every column of a cursor description, None where unknown."""
    codes = [entry[1] for entry in description]
    dialect_name = connection.dialect.name

    if dialect_name == "mysql":
        return [_MYSQL_TYPE_NAMES.get(code, _generic_type_name(code)) for code in codes]

    if dialect_name == "postgresql":
        oids = sorted({code for code in codes if isinstance(code, int)})
        names: Dict[int, str] = {}
        if oids:
            for oid, type_name in connection.execute(_PG_TYPE_QUERY, {"oids": oids}):
                names[oid] = type_name
        return [names.get(code, _generic_type_name(code)) for code in codes]

    if dialect_name == "oracle":
        return [_oracle_type_name(code) for code in codes]

    return [_generic_type_name(code) for code in codes]


def column_nullable(entry: Sequence[Any]) -> bool:
    # DB-API null_ok; drivers that do not report it count as not nullable
    return bool(entry[6]) if len(entry) > 6 else False
