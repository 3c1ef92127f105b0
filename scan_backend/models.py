from typing import List, Literal, Optional
from pydantic import BaseModel, Field, field_validator


class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class CreateScanSessionRequest(BaseModel):
    deliveryNoteNumber: str = Field(..., description="Delivery note (följesedel) number.")
    barcodes: List[str] = Field(default_factory=list)

    @field_validator("deliveryNoteNumber")
    @classmethod
    def _note_required(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Delivery note number is required.")
        return value


class UpdateScanSessionRequest(BaseModel):
    barcodes: Optional[List[str]] = None
    emailSent: Optional[Literal["pending", "sent", "failed"]] = None


class AddBarcodeRequest(BaseModel):
    """Either a scanned/typed ``barcode`` or the four structured fields."""

    barcode: Optional[str] = None
    orderNumber: Optional[str] = None
    articleNumber: Optional[str] = None
    batchNumber: Optional[str] = None
    weight: Optional[str] = None


class ParseRequest(BaseModel):
    code: str
