"""
Two-factor and upload request schemas.
"""

from typing import Optional

from pydantic import BaseModel, Field, field_validator


class TotpCode(BaseModel):
    code: str = Field(..., min_length=6, max_length=10)
    remember_device: bool = False

    @field_validator('code')
    @classmethod
    def digits_only(cls, v: str) -> str:
        v = v.replace(' ', '').strip()
        if not v.isdigit():
            raise ValueError('Code must contain digits only')
        return v

    model_config = {"extra": "forbid"}


class RecoveryCodeIn(BaseModel):
    code: str = Field(..., min_length=8, max_length=20)
    remember_device: bool = False

    model_config = {"extra": "forbid"}


class UploadSignRequest(BaseModel):
    filename: str = Field(..., min_length=1, max_length=255)
    mime: str = Field(..., min_length=1, max_length=100)
    size: int = Field(..., ge=1)
    duration: Optional[float] = Field(default=None, ge=0)

    model_config = {"extra": "forbid"}
