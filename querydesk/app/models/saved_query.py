from typing import Optional
from sqlalchemy import Column, Text
from sqlmodel import Field, SQLModel
from datetime import datetime

class SavedQuery(SQLModel, table=True):
    # Owned and edited by the saved-query service; the executor only resolves it
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    owner_id: str = Field(index=True)
    data_source_id: int = Field(foreign_key="datasource.id", index=True)
    sql_text: str = Field(sa_column=Column(Text, nullable=False))
    deleted: bool = Field(default=False, index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
