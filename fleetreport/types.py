from __future__ import annotations

import base64
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


LICENSE_PLATE_PATTERN = re.compile(r'^[A-Z]{3}-[0-9][A-Z0-9]{3}$')

_PAYMENT_ALIASES = {
    'paid': 'Paid',
    'pago': 'Paid',
    'pending': 'Pending',
    'pendente': 'Pending',
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_record_id() -> str:
    return uuid4().hex


def _coerce_payment_status(value: Any) -> Any:
    if isinstance(value, str):
        return _PAYMENT_ALIASES.get(value.strip().lower(), value)
    return value


class PaymentStatus(str, Enum):
    paid = 'Paid'
    pending = 'Pending'


class RouteOption(str, Enum):
    manaus_to_santarem = 'manaus_to_santarem'
    santarem_to_manaus = 'santarem_to_manaus'

    @property
    def title(self) -> str:
        if self is RouteOption.santarem_to_manaus:
            return 'Vehicle Report: Santarém to Manaus'
        return 'Vehicle Report: Manaus to Santarém'


class ReportStatus(str, Enum):
    generating_pdf = 'generating_pdf'
    success = 'success'
    error = 'error'


class CanonicalImage(BaseModel):
    model_config = ConfigDict(frozen=True)

    pixel_width: int
    pixel_height: int
    encoded_bytes: bytes = Field(repr=False)
    mime_type: str = 'image/jpeg'

    def to_data_url(self) -> str:
        payload = base64.b64encode(self.encoded_bytes).decode('ascii')
        return f'data:{self.mime_type};base64,{payload}'


class VehicleRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_record_id)
    driver_name: str
    company_name: str | None = None
    license_plate: str
    vehicle_model: str = ''
    declared_value: str
    photo: CanonicalImage | None = None
    payment_status: PaymentStatus = PaymentStatus.pending

    @field_validator('payment_status', mode='before')
    @classmethod
    def _normalize_payment(cls, value: Any) -> Any:
        return _coerce_payment_status(value)


class RecordDraft(BaseModel):
    """Form submission for one vehicle, before its photo is attached."""

    driver_name: str
    company_name: str | None = None
    license_plate: str
    vehicle_model: str = ''
    declared_value: str
    payment_status: PaymentStatus = PaymentStatus.pending

    @field_validator('payment_status', mode='before')
    @classmethod
    def _normalize_payment(cls, value: Any) -> Any:
        return _coerce_payment_status(value)

    @field_validator('driver_name', 'declared_value')
    @classmethod
    def _required(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError('field is required')
        return value

    @field_validator('company_name')
    @classmethod
    def _blank_to_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None

    @field_validator('license_plate')
    @classmethod
    def _check_plate(cls, value: str) -> str:
        value = value.strip()
        if not LICENSE_PLATE_PATTERN.fullmatch(value):
            raise ValueError('license plate must look like ABC-1234 or ABC-1B23')
        return value

    def to_record(self, photo: CanonicalImage | None = None, *, record_id: str | None = None) -> VehicleRecord:
        return VehicleRecord(
            id=record_id or _new_record_id(),
            driver_name=self.driver_name,
            company_name=self.company_name,
            license_plate=self.license_plate,
            vehicle_model=self.vehicle_model.strip(),
            declared_value=self.declared_value,
            photo=photo,
            payment_status=self.payment_status,
        )


class ExtractedVehicleInfo(BaseModel):
    license_plate: str | None = Field(
        default=None,
        validation_alias=AliasChoices('licensePlate', 'license_plate'),
    )
    vehicle_model: str | None = Field(
        default=None,
        validation_alias=AliasChoices('vehicleModel', 'vehicle_model'),
    )


class ReportResult(BaseModel):
    status: ReportStatus
    message: str
    path: str | None = None
    filename: str | None = None
    page_count: int = 0
    record_count: int = 0
    error: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
