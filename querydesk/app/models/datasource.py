from typing import Optional
from sqlmodel import Field, SQLModel
from datetime import datetime

from querydesk.app.core.dialects import DatabaseType

class ConnectionStatus:
    ACTIVE = "ACTIVE"      # last probe succeeded (or never probed)
    ERROR = "ERROR"        # last probe failed

class DataSourceBase(SQLModel):
    name: str = Field(index=True, max_length=100)
    description: Optional[str] = Field(default=None)
    database_type: DatabaseType
    host: str
    port: Optional[int] = None  # filled from the dialect default when omitted
    database_name: str = Field(max_length=100)
    username: str = Field(max_length=100)
    ssl_enabled: bool = False
    connection_params: Optional[str] = None  # JSON object of extra driver/URL parameters

class DataSource(DataSourceBase, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    owner_id: str = Field(index=True)
    password: str = Field(default="", max_length=500)  # opaque; handled by the credential store
    status: str = Field(default=ConnectionStatus.ACTIVE, index=True)
    last_tested_at: Optional[datetime] = None
    deleted: bool = Field(default=False, index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

class DataSourceCreate(DataSourceBase):
    password: str = ""

class DataSourceRead(DataSourceBase):
    id: int
    status: str
    last_tested_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

class DataSourceUpdate(SQLModel):
    name: Optional[str] = None
    description: Optional[str] = None
    host: Optional[str] = None
    port: Optional[int] = None
    database_name: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    ssl_enabled: Optional[bool] = None
    connection_params: Optional[str] = None
