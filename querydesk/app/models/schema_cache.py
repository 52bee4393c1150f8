from typing import Optional
from sqlalchemy import Column, Text
from sqlmodel import Field, SQLModel
from datetime import datetime

class SchemaCache(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    data_source_id: int = Field(foreign_key="datasource.id", index=True, unique=True)
    schema_data: str = Field(sa_column=Column(Text, nullable=False))  # serialized SchemaDocument
    cached_at: datetime = Field(default_factory=datetime.utcnow)
    expires_at: datetime = Field(index=True)
