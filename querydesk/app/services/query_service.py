import json
import logging
import re
import time
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Tuple

from sqlalchemy import create_engine, text
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.pool import NullPool
from sqlmodel import Session, col, select

from querydesk.app.core import drivers
from querydesk.app.core.config import settings
from querydesk.app.core.dialects import build_url, connect_args, get_dialect
from querydesk.app.core.exceptions import DataSourceNotFound, QueryExecutionFault, SavedQueryNotFound
from querydesk.app.core.security import error_message
from querydesk.app.models.datasource import DataSource
from querydesk.app.models.execution import (
    ColumnInfo,
    ExecutionStatus,
    QueryExecution,
    QueryExecutionResult,
    QueryHistoryItem,
)
from querydesk.app.models.saved_query import SavedQuery
from querydesk.app.services import credentials as credential_service

logger = logging.getLogger(__name__)

SAVED_QUERY_LIMIT = 1000
SAVED_QUERY_TIMEOUT_SECONDS = 30
RECENT_EXECUTIONS = 10

# :name, but not ::cast, not a time literal like 10:30 and not an escaped \:
_PARAMETER = re.compile(r"(?<![:\w\\]):(\w+)\b(?!:\w)")
# :name::type; text() would otherwise read the name short
_CAST_AFTER_PARAMETER = re.compile(r"((?<![:\w\\]):\w+)::(?=\w)")
_LIMIT_CLAUSE = re.compile(r"\bLIMIT\b", re.IGNORECASE)
_READ_STATEMENT = re.compile(r"^\s*(SELECT|WITH|VALUES)\b", re.IGNORECASE)


def find_parameters(sql: str) -> List[str]:
    """Parameter names in order of first appearance."""
    names: List[str] = []
    for name in _PARAMETER.findall(sql):
        if name not in names:
            names.append(name)
    return names

def _literal(value: Any) -> str:
    if value is None:
        return "NULL"
    if isinstance(value, str):
        return "'" + value.replace("'", "''") + "'"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)

def apply_parameters(sql: str, parameters: Optional[Mapping[str, Any]]) -> str:
    """
    Splice parameter values into the SQL text.
    Strings are single-quoted with embedded quotes doubled; missing or None values
    become NULL; anything else is written with its textual form.
    """
    if not parameters or not find_parameters(sql):
        return sql
    return _PARAMETER.sub(lambda m: _literal(parameters.get(m.group(1))), sql)

def apply_limit(sql: str, limit: Optional[int]) -> str:
    """
    Append LIMIT n unless the statement already carries a LIMIT, in which case the
    SQL comes back untouched.
    """
    if limit is None:
        return sql

    trimmed = sql.strip()
    if trimmed.endswith(";"):
        trimmed = trimmed[:-1].strip()

    if _LIMIT_CLAUSE.search(trimmed):
        return sql

    return f"{trimmed} LIMIT {limit}"

def _prepare(sql: str, parameters: Optional[Mapping[str, Any]], limit: Optional[int], supports_limit: bool) -> Tuple[str, Dict[str, Any]]:
    """Final statement text plus the values to bind (empty when inlined)."""
    statement = sql
    if supports_limit and _READ_STATEMENT.match(statement):
        statement = apply_limit(statement, limit)

    # Without parameters the SQL goes to the driver as written
    if not parameters:
        return statement, {}
    if settings.INLINE_PARAMETERS:
        return apply_parameters(statement, parameters), {}

    return statement, {name: parameters.get(name) for name in find_parameters(statement)}


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)

def _record(session: Session, execution: QueryExecution) -> QueryExecution:
    session.add(execution)
    session.commit()
    session.refresh(execution)
    return execution

def _run(conn, statement: str, bound: Dict[str, Any]):
    if bound:
        return conn.execute(text(_CAST_AFTER_PARAMETER.sub(r"\1\\:\\:", statement)), bound)
    # No parameter collection at all, so drivers leave % signs alone
    return conn.execution_options(no_parameters=True).exec_driver_sql(statement)

def execute_query(
    session: Session,
    data_source: DataSource,
    sql: str,
    parameters: Optional[Mapping[str, Any]] = None,
    limit: Optional[int] = None,
    timeout: Optional[int] = None,
    owner_id: str = "admin",
    store=None,
) -> QueryExecutionResult:
    """
    Run one SQL statement against a data source and record the attempt.

    Database errors come back as a FAILED or TIMEOUT result. Anything else is stored
    as FAILED and re-raised as QueryExecutionFault.
    """
    limit = settings.DEFAULT_QUERY_LIMIT if limit is None else limit
    timeout = settings.DEFAULT_QUERY_TIMEOUT_SECONDS if timeout is None else timeout
    logger.info(f"Executing query on data source {data_source.id} for user: {owner_id}")

    started = time.perf_counter()
    execution = QueryExecution(
        owner_id=owner_id,
        data_source_id=data_source.id,
        sql_text=sql,
        status=ExecutionStatus.FAILED,
        executed_at=datetime.utcnow(),
    )
    columns: List[ColumnInfo] = []
    rows: List[Dict[str, Any]] = []
    dialect_name = None
    password = None

    try:
        dialect = get_dialect(data_source.database_type)
        statement, bound = _prepare(sql, parameters, limit, dialect.supports_limit_clause)
        execution.sql_text = statement
        execution.parameters = json.dumps(bound, default=str) if bound else None

        creds = (store or credential_service.credential_store).resolve(data_source)
        password = creds.password
        engine = create_engine(
            build_url(data_source, creds.username, creds.password),
            poolclass=NullPool,
            connect_args=connect_args(data_source.database_type, settings.PROBE_TIMEOUT_SECONDS, timeout),
        )
        try:
            with engine.connect() as conn:
                dialect_name = conn.dialect.name
                drivers.apply_statement_timeout(conn, timeout)
                result = _run(conn, statement, bound)

                if result.returns_rows:
                    description = result.cursor.description
                    keys = list(result.keys())
                    fetched = result.fetchmany(limit) if limit is not None else result.fetchall()
                    # Rows past the limit are discarded, not counted
                    result.close()
                    type_names = drivers.column_type_names(conn, description)
                    columns = [
                        ColumnInfo(name=keys[i], type=type_names[i], nullable=drivers.column_nullable(entry))
                        for i, entry in enumerate(description)
                    ]
                    rows = [dict(zip(keys, row)) for row in fetched]
                    rows_returned = len(rows)
                else:
                    rows_returned = max(result.rowcount, 0)
                conn.commit()
        finally:
            engine.dispose()

        execution.status = ExecutionStatus.SUCCESS
        execution.execution_time_ms = _elapsed_ms(started)
        execution.rows_returned = rows_returned
        execution = _record(session, execution)
        logger.info(f"Query executed successfully - Rows: {rows_returned}, Time: {execution.execution_time_ms}ms")

        return QueryExecutionResult(
            execution_id=execution.id,
            status=ExecutionStatus.SUCCESS,
            execution_time_ms=execution.execution_time_ms,
            rows_returned=rows_returned,
            executed_at=execution.executed_at,
            columns=columns,
            rows=rows,
        )

    except SQLAlchemyError as e:
        timed_out = isinstance(e, DBAPIError) and drivers.is_timeout(e, dialect_name or "")
        message = error_message(e, secrets=(password,))
        execution.status = ExecutionStatus.TIMEOUT if timed_out else ExecutionStatus.FAILED
        execution.execution_time_ms = _elapsed_ms(started)
        execution.rows_returned = 0
        execution.error_message = message
        # The system database may be the one that failed
        session.rollback()
        execution = _record(session, execution)
        logger.error(f"Query execution {execution.status.value.lower()}: {message}")

        return QueryExecutionResult(
            execution_id=execution.id,
            status=execution.status,
            execution_time_ms=execution.execution_time_ms,
            rows_returned=0,
            error_message=message,
            executed_at=execution.executed_at,
        )

    except Exception as e:
        message = error_message(e, secrets=(password,))
        execution.status = ExecutionStatus.FAILED
        execution.execution_time_ms = _elapsed_ms(started)
        execution.rows_returned = 0
        execution.error_message = f"Unexpected error: {message}"
        session.rollback()
        execution = _record(session, execution)
        logger.exception("Unexpected error during query execution")

        raise QueryExecutionFault(f"Query execution failed: {message}", execution_id=execution.id) from e


def find_data_source(session: Session, data_source_id: int, owner_id: str) -> DataSource:
    data_source = session.exec(
        select(DataSource)
        .where(DataSource.id == data_source_id)
        .where(DataSource.owner_id == owner_id)
        .where(DataSource.deleted == False)  # noqa: E712
    ).first()
    if not data_source:
        raise DataSourceNotFound(data_source_id)
    return data_source

def execute_saved_query(
    session: Session,
    query_id: int,
    owner_id: str,
    parameters: Optional[Mapping[str, Any]] = None,
    store=None,
) -> QueryExecutionResult:
    logger.info(f"Executing saved query: {query_id} for user: {owner_id}")

    query = session.exec(
        select(SavedQuery)
        .where(SavedQuery.id == query_id)
        .where(SavedQuery.owner_id == owner_id)
        .where(SavedQuery.deleted == False)  # noqa: E712
    ).first()
    if not query:
        raise SavedQueryNotFound(query_id)
    data_source = find_data_source(session, query.data_source_id, owner_id)

    try:
        result = execute_query(
            session,
            data_source,
            query.sql_text,
            parameters=parameters,
            limit=SAVED_QUERY_LIMIT,
            timeout=SAVED_QUERY_TIMEOUT_SECONDS,
            owner_id=owner_id,
            store=store,
        )
    except QueryExecutionFault as fault:
        _link_to_query(session, fault.execution_id, query.id)
        raise

    _link_to_query(session, result.execution_id, query.id)
    return result

def _link_to_query(session: Session, execution_id: Optional[int], query_id: int) -> None:
    execution = session.get(QueryExecution, execution_id) if execution_id is not None else None
    if execution is None:
        return
    execution.query_id = query_id
    session.add(execution)
    session.commit()


def _history_item(execution: QueryExecution, query_names: Dict[int, str]) -> QueryHistoryItem:
    return QueryHistoryItem(
        id=execution.id,
        query_id=execution.query_id,
        query_name=query_names.get(execution.query_id, "Ad-hoc Query") if execution.query_id else "Ad-hoc Query",
        data_source_id=execution.data_source_id,
        sql_text=execution.sql_text,
        status=execution.status,
        execution_time_ms=execution.execution_time_ms,
        rows_returned=execution.rows_returned,
        error_message=execution.error_message,
        executed_at=execution.executed_at,
    )

def _to_history(session: Session, executions: List[QueryExecution]) -> List[QueryHistoryItem]:
    query_ids = {e.query_id for e in executions if e.query_id is not None}
    names: Dict[int, str] = {}
    if query_ids:
        for query in session.exec(select(SavedQuery).where(col(SavedQuery.id).in_(query_ids))).all():
            names[query.id] = query.name
    return [_history_item(e, names) for e in executions]

def get_execution_history(session: Session, owner_id: str, skip: int = 0, limit: int = 20) -> List[QueryHistoryItem]:
    executions = session.exec(
        select(QueryExecution)
        .where(QueryExecution.owner_id == owner_id)
        .order_by(col(QueryExecution.executed_at).desc(), col(QueryExecution.id).desc())
        .offset(skip)
        .limit(limit)
    ).all()
    return _to_history(session, list(executions))

def get_recent_executions(session: Session, owner_id: str) -> List[QueryHistoryItem]:
    return get_execution_history(session, owner_id, skip=0, limit=RECENT_EXECUTIONS)

def get_execution(session: Session, execution_id: int, owner_id: str) -> Optional[QueryHistoryItem]:
    execution = session.get(QueryExecution, execution_id)
    # Someone else's execution is reported the same as a missing one
    if not execution or execution.owner_id != owner_id:
        return None
    return _to_history(session, [execution])[0]
