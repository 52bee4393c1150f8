from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict

class ColumnDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    type: Optional[str] = None  # vendor type name
    size: Optional[int] = None
    nullable: bool = True
    default_value: Optional[str] = None

class ForeignKeyDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    column_name: str
    referenced_table: str
    referenced_column: str

class TableDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    type: str = "TABLE"  # TABLE or VIEW
    columns: List[ColumnDescriptor] = []
    primary_keys: List[str] = []
    foreign_keys: List[ForeignKeyDescriptor] = []

class SchemaDocument(BaseModel):
    """Normalized description of one database's tables at discovery time."""
    model_config = ConfigDict(frozen=True)

    database_type: str
    database_name: str
    tables: List[TableDescriptor] = []
    discovered_at: datetime
