from enum import Enum
from typing import Any, Dict, List, Optional
from sqlalchemy import Column, Text
from sqlmodel import Field, SQLModel
from pydantic import BaseModel
from datetime import datetime

class ExecutionStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    TIMEOUT = "TIMEOUT"

class QueryExecution(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    query_id: Optional[int] = Field(default=None, foreign_key="savedquery.id", index=True)  # None for ad-hoc SQL
    owner_id: str = Field(index=True)
    data_source_id: int = Field(foreign_key="datasource.id", index=True)
    sql_text: str = Field(sa_column=Column(Text, nullable=False))
    parameters: Optional[str] = Field(default=None, sa_column=Column(Text))  # JSON, bound values
    status: ExecutionStatus = Field(index=True)
    execution_time_ms: int = 0
    rows_returned: int = 0
    error_message: Optional[str] = Field(default=None, sa_column=Column(Text))
    executed_at: datetime = Field(default_factory=datetime.utcnow, index=True)

class ColumnInfo(BaseModel):
    name: str
    type: Optional[str] = None
    nullable: bool = False

class QueryExecutionResult(BaseModel):
    execution_id: Optional[int] = None
    status: ExecutionStatus
    execution_time_ms: int
    rows_returned: int
    error_message: Optional[str] = None
    executed_at: datetime
    columns: Optional[List[ColumnInfo]] = None
    rows: Optional[List[Dict[str, Any]]] = None

class QueryHistoryItem(BaseModel):
    id: int
    query_id: Optional[int] = None
    query_name: str
    data_source_id: int
    sql_text: str
    status: ExecutionStatus
    execution_time_ms: int
    rows_returned: int
    error_message: Optional[str] = None
    executed_at: datetime
