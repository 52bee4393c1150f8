from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlmodel import Session, select, func

from querydesk.app.core.db import get_session
from querydesk.app.core.dialects import DatabaseType, default_port, parse_connection_params
from querydesk.app.core.exceptions import DataSourceNotFound, SchemaDiscoveryError
from querydesk.app.core.identity import get_current_user
from querydesk.app.models.datasource import DataSource, DataSourceCreate, DataSourceRead, DataSourceUpdate
from querydesk.app.models.schema import SchemaDocument
from querydesk.app.services.audit_service import log_action
from querydesk.app.services.connection_service import ConnectionTestResult, probe_connection, probe_data_source
from querydesk.app.services.query_service import find_data_source
from querydesk.app.services.schema_service import clear_schema_cache, get_schema

router = APIRouter(prefix="/datasources", tags=["datasources"])

# Changing any of these makes a cached schema untrustworthy
CONNECTION_FIELDS = ("host", "port", "database_name", "username", "password", "ssl_enabled", "connection_params")

class ConnectionTestRequest(BaseModel):
    database_type: DatabaseType
    host: str
    port: Optional[int] = None
    database_name: str
    username: str
    password: str = ""
    ssl_enabled: bool = False
    connection_params: Optional[str] = None

def _get_owned(session: Session, datasource_id: int, user_id: str) -> DataSource:
    try:
        return find_data_source(session, datasource_id, user_id)
    except DataSourceNotFound:
        raise HTTPException(status_code=404, detail="DataSource not found")

def _check_params(raw: Optional[str]) -> None:
    try:
        parse_connection_params(raw)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Invalid connection_params: {e}")

def _name_taken(session: Session, user_id: str, name: str) -> bool:
    existing = session.exec(
        select(DataSource)
        .where(DataSource.owner_id == user_id)
        .where(DataSource.name == name)
        .where(DataSource.deleted == False)  # noqa: E712
    ).first()
    return existing is not None

@router.post("/", response_model=DataSourceRead)
def create_datasource(
    datasource: DataSourceCreate,
    session: Session = Depends(get_session),
    user_id: str = Depends(get_current_user),
):
    if _name_taken(session, user_id, datasource.name):
        raise HTTPException(status_code=409, detail=f"DataSource already exists with name: {datasource.name}")
    _check_params(datasource.connection_params)

    db_datasource = DataSource.model_validate(
        datasource,
        update={"owner_id": user_id, "port": datasource.port or default_port(datasource.database_type)},
    )
    session.add(db_datasource)
    session.commit()
    session.refresh(db_datasource)

    log_action(session, user_id, "create_datasource", db_datasource.name, db_datasource.id,
               details=f"Type: {db_datasource.database_type.value}")
    session.commit()

    return db_datasource

@router.get("/", response_model=Dict[str, Any])
def read_datasources(
    skip: int = 0,
    limit: int = 100,
    name: Optional[str] = None,
    database_type: Optional[DatabaseType] = None,
    session: Session = Depends(get_session),
    user_id: str = Depends(get_current_user),
):
    query = select(DataSource).where(DataSource.owner_id == user_id).where(DataSource.deleted == False)  # noqa: E712
    if name:
        query = query.where(DataSource.name.contains(name))
    if database_type:
        query = query.where(DataSource.database_type == database_type)

    count_query = select(func.count()).select_from(query.subquery())
    total = session.exec(count_query).one()

    datasources = session.exec(query.order_by(DataSource.id).offset(skip).limit(limit)).all()

    return {
        "data": [DataSourceRead.model_validate(ds) for ds in datasources],
        "total": total,
        "skip": skip,
        "limit": limit
    }

@router.get("/{datasource_id}", response_model=DataSourceRead)
def read_datasource(
    datasource_id: int,
    session: Session = Depends(get_session),
    user_id: str = Depends(get_current_user),
):
    return _get_owned(session, datasource_id, user_id)

@router.put("/{datasource_id}", response_model=DataSourceRead)
def update_datasource(
    datasource_id: int,
    update: DataSourceUpdate,
    session: Session = Depends(get_session),
    user_id: str = Depends(get_current_user),
):
    datasource = _get_owned(session, datasource_id, user_id)
    changes = update.model_dump(exclude_unset=True)

    new_name = changes.get("name")
    if new_name and new_name != datasource.name and _name_taken(session, user_id, new_name):
        raise HTTPException(status_code=409, detail=f"DataSource already exists with name: {new_name}")
    if "connection_params" in changes:
        _check_params(changes["connection_params"])

    datasource.sqlmodel_update(changes)
    datasource.updated_at = datetime.utcnow()
    session.add(datasource)
    session.commit()
    session.refresh(datasource)

    if any(field in changes for field in CONNECTION_FIELDS):
        clear_schema_cache(session, datasource.id)

    changed = ", ".join(sorted(field for field in changes if field != "password"))
    log_action(session, user_id, "update_datasource", datasource.name, datasource.id,
               details=f"Changed: {changed or 'password'}" if changes else "No changes")
    session.commit()
    session.refresh(datasource)

    return datasource

@router.delete("/{datasource_id}")
def delete_datasource(
    datasource_id: int,
    session: Session = Depends(get_session),
    user_id: str = Depends(get_current_user),
):
    datasource = _get_owned(session, datasource_id, user_id)

    # History keeps pointing at the row, so it is only flagged
    datasource.deleted = True
    datasource.updated_at = datetime.utcnow()
    session.add(datasource)
    session.commit()

    clear_schema_cache(session, datasource.id)

    log_action(session, user_id, "delete_datasource", datasource.name, datasource.id)
    session.commit()
    return {"ok": True}

@router.post("/{datasource_id}/test", response_model=ConnectionTestResult)
def test_datasource_connection(
    datasource_id: int,
    session: Session = Depends(get_session),
    user_id: str = Depends(get_current_user),
):
    datasource = _get_owned(session, datasource_id, user_id)
    result = probe_data_source(session, datasource)

    log_action(session, user_id, "test_connection", datasource.name, datasource.id,
               details=f"Success: {result.success}. {result.message}")
    session.commit()
    return result

@router.get("/{datasource_id}/schema", response_model=SchemaDocument)
def read_datasource_schema(
    datasource_id: int,
    session: Session = Depends(get_session),
    user_id: str = Depends(get_current_user),
):
    datasource = _get_owned(session, datasource_id, user_id)
    try:
        return get_schema(session, datasource)
    except SchemaDiscoveryError as e:
        raise HTTPException(status_code=502, detail=str(e))

@router.delete("/{datasource_id}/schema/cache")
def clear_datasource_schema_cache(
    datasource_id: int,
    session: Session = Depends(get_session),
    user_id: str = Depends(get_current_user),
):
    datasource = _get_owned(session, datasource_id, user_id)
    clear_schema_cache(session, datasource.id)

    log_action(session, user_id, "clear_schema_cache", datasource.name, datasource.id)
    session.commit()
    return {"ok": True}

@router.post("/test-connection", response_model=ConnectionTestResult)
def test_connection(request: ConnectionTestRequest):
    """
    Test connection details before they are saved.
    """
    _check_params(request.connection_params)
    return probe_connection(
        request.database_type,
        request.host,
        request.port or default_port(request.database_type),
        request.database_name,
        request.username,
        request.password,
        ssl_enabled=request.ssl_enabled,
        connection_params=request.connection_params,
    )
