from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlmodel import Session

from querydesk.app.core.config import settings
from querydesk.app.core.db import get_session
from querydesk.app.core.exceptions import DataSourceNotFound, QueryExecutionFault, SavedQueryNotFound
from querydesk.app.core.identity import get_current_user
from querydesk.app.models.execution import QueryExecutionResult, QueryHistoryItem
from querydesk.app.services import query_service

router = APIRouter(prefix="/queries", tags=["queries"])

class ExecuteQueryRequest(BaseModel):
    sql_query: str = Field(min_length=1)
    data_source_id: int
    parameters: Optional[Dict[str, Any]] = None
    limit: int = Field(default_factory=lambda: settings.DEFAULT_QUERY_LIMIT, ge=1)
    timeout: int = Field(default_factory=lambda: settings.DEFAULT_QUERY_TIMEOUT_SECONDS, ge=1)

class ExecuteSavedQueryRequest(BaseModel):
    parameters: Optional[Dict[str, Any]] = None

@router.post("/execute", response_model=QueryExecutionResult)
def execute_query(
    request: ExecuteQueryRequest,
    session: Session = Depends(get_session),
    user_id: str = Depends(get_current_user),
):
    try:
        datasource = query_service.find_data_source(session, request.data_source_id, user_id)
        return query_service.execute_query(
            session,
            datasource,
            request.sql_query,
            parameters=request.parameters,
            limit=request.limit,
            timeout=request.timeout,
            owner_id=user_id,
        )
    except DataSourceNotFound:
        raise HTTPException(status_code=404, detail="DataSource not found")
    except QueryExecutionFault as e:
        raise HTTPException(status_code=500, detail=str(e))

@router.post("/saved/{query_id}/execute", response_model=QueryExecutionResult)
def execute_saved_query(
    query_id: int,
    request: Optional[ExecuteSavedQueryRequest] = None,
    session: Session = Depends(get_session),
    user_id: str = Depends(get_current_user),
):
    try:
        return query_service.execute_saved_query(
            session,
            query_id,
            user_id,
            parameters=request.parameters if request else None,
        )
    except (SavedQueryNotFound, DataSourceNotFound) as e:
        raise HTTPException(status_code=404, detail=str(e))
    except QueryExecutionFault as e:
        raise HTTPException(status_code=500, detail=str(e))

@router.get("/executions", response_model=List[QueryHistoryItem])
def read_execution_history(
    skip: int = 0,
    limit: int = 20,
    session: Session = Depends(get_session),
    user_id: str = Depends(get_current_user),
):
    return query_service.get_execution_history(session, user_id, skip=skip, limit=limit)

@router.get("/executions/recent", response_model=List[QueryHistoryItem])
def read_recent_executions(
    session: Session = Depends(get_session),
    user_id: str = Depends(get_current_user),
):
    return query_service.get_recent_executions(session, user_id)

@router.get("/executions/{execution_id}", response_model=QueryHistoryItem)
def read_execution(
    execution_id: int,
    session: Session = Depends(get_session),
    user_id: str = Depends(get_current_user),
):
    item = query_service.get_execution(session, execution_id, user_id)
    if not item:
        raise HTTPException(status_code=404, detail="Execution not found")
    return item
