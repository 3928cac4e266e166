
from pydantic import BaseModel, Field, field_validator
from typing import Optional
from uuid import UUID
from datetime import datetime

class PDVcreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100, description="Name of the PDV")
    address: Optional[str] = Field(None, max_length=255, description="Address of the PDV")
    phone_number: Optional[str] = Field(default=None, max_length=30, description="Phone number of the PDV")
    is_main: bool = Field(default=False, description="If this is the main PDV")
    is_active: bool = Field(default=True, description="Indicates if the PDV is active")

    @field_validator('name')
    @classmethod
    def validate_name(cls, v: str) -> str:
        cleaned = v.strip()
        if not cleaned:
            raise ValueError('El nombre no puede estar vacío')
        return cleaned

    class Config:
        from_attributes = True

class PDVOutput(BaseModel):
    id: UUID = Field(..., description="Unique identifier of the PDV")
    name: str = Field(..., description="Name of the PDV")
    address: Optional[str] = Field(None, description="Address of the PDV")
    phone_number: Optional[str] = Field(None, description="Phone number of the PDV")
    is_main: bool = Field(default=False, description="If this is the main PDV")
    is_active: bool = Field(..., description="Indicates if the PDV is active")
    created_at: Optional[datetime] = Field(None, description="Creation timestamp")
    updated_at: Optional[datetime] = Field(None, description="Last update timestamp")

    class Config:
        from_attributes = True

class PDVUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100, description="Name of the PDV")
    address: Optional[str] = Field(None, max_length=255, description="Address of the PDV")
    phone_number: Optional[str] = Field(None, max_length=30, description="Phone number of the PDV")
    is_main: Optional[bool] = Field(None, description="If this is the main PDV")

    class Config:
        from_attributes = True

class PDVStatusUpdate(BaseModel):
    is_active: bool = Field(..., description="Nuevo estado del PDV")

class PDVList(BaseModel):
    pdvs: list[PDVOutput] = Field(..., description="List of PDVs")
    total: int = Field(..., description="Total number of PDVs")
    limit: int = Field(..., description="Number of PDVs per page")
    offset: int = Field(..., description="Number of PDVs skipped")

    class Config:
        from_attributes = True
