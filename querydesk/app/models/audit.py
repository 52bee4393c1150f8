from typing import Optional
from sqlmodel import Field, SQLModel
from datetime import datetime

class AuditLog(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    action: str = Field(index=True)  # create_datasource, update_datasource, test_connection, ...
    resource: str  # data source name
    resource_id: Optional[int] = None
    details: Optional[str] = None  # always passed through redact_secrets
    timestamp: datetime = Field(default_factory=datetime.utcnow)
