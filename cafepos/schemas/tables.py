from pydantic import BaseModel, Field
from typing import Literal, Optional

TableStatusLiteral = Literal["available", "occupied", "reserved", "maintenance", "paid", "printed"]

class TableIn(BaseModel):
    table_no: int = Field(ge=1)
    capacity: int = 4
    location: Optional[str] = "indoor"

class TableStatusIn(BaseModel):
    status: TableStatusLiteral

class TableMoveIn(BaseModel):
    to_table_id: str

class TaxProfile(BaseModel):
    cgst_rate: float = Field(ge=0)
    sgst_rate: float = Field(ge=0)
    gstin: Optional[str] = None
