from __future__ import annotations

from datetime import date
from typing import Annotated, Any, Dict, List, Mapping, Optional, Type, TypeVar, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from coal_settlement.exceptions import ValidationError
from coal_settlement.utils import normalize_date


class CamelModel(BaseModel):
    """Snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        allow_inf_nan=False,
    )


InputT = TypeVar("InputT", bound=BaseModel)


def _business_date(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    return normalize_date(value)


# Accepts 2024-03-01, 2024/03/01, 20240301 and full ISO timestamps.
BusinessDate = Annotated[date, BeforeValidator(_business_date)]


def _strip_plates(value: Optional[List[str]]) -> List[str]:
    plates: List[str] = []
    for plate in value or []:
        text = str(plate).strip()
        if text and text not in plates:
            plates.append(text)
    return plates


# ---------------------------------------------------------------------------
# Reference data
# ---------------------------------------------------------------------------


class PartyCreate(CamelModel):
    name: str = Field(..., min_length=1)
    contact: str = ""
    phone: str = ""
    address: str = ""

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("name is required")
        return value.strip()


class PartyRead(PartyCreate):
    id: str
    created_at: str


class DriverCreate(CamelModel):
    name: str = Field(..., min_length=1)
    phone: str = ""
    team_name: str = ""
    plate_numbers: List[str] = Field(default_factory=list)

    @field_validator("plate_numbers")
    @classmethod
    def _normalize_plates(cls, value: List[str]) -> List[str]:
        return _strip_plates(value)

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("name is required")
        return value.strip()


class DriverRead(CamelModel):
    id: str
    name: str
    phone: str = ""
    team_name: str = ""
    plate_numbers: List[str] = Field(default_factory=list)
    created_at: str


# ---------------------------------------------------------------------------
# Delivery batches
# ---------------------------------------------------------------------------


class VehicleInput(CamelModel):
    plate_number: str = ""
    driver_name: str = ""
    weight: float = Field(..., ge=0)
    # Omitted or null means weight x the batch coal price.
    amount: Optional[float] = Field(default=None, ge=0)


class BatchCreate(CamelModel):
    customer_id: str = ""
    customer_name: Optional[str] = None
    supplier_id: str = ""
    supplier_name: Optional[str] = None
    departure_date: BusinessDate = Field(default_factory=date.today)
    coal_price: float = Field(..., ge=0)
    vehicles: List[VehicleInput] = Field(default_factory=list)


class BatchPaymentCreate(CamelModel):
    amount: float = Field(..., ge=0)
    payment_date: BusinessDate = Field(default_factory=date.today)
    remark: str = ""


class VehicleRead(CamelModel):
    id: str
    batch_id: str
    plate_number: str
    driver_name: str
    weight: float
    amount: float
    created_at: str


class BatchPaymentRead(CamelModel):
    id: str
    batch_id: str
    amount: float
    payment_date: str
    remark: str = ""
    created_at: str


class BatchRead(CamelModel):
    id: str
    customer_id: str
    customer_name: str
    supplier_id: str
    supplier_name: str
    departure_date: str
    coal_price: float
    vehicles: List[VehicleRead] = Field(default_factory=list)
    payment_records: List[BatchPaymentRead] = Field(default_factory=list)
    total_weight: float
    total_amount: float
    paid_amount: float
    remaining_amount: float = Field(..., ge=0)
    status: str = Field(..., pattern="^(pending|partial_paid|fully_paid)$")
    created_at: str


# ---------------------------------------------------------------------------
# Shipments
# ---------------------------------------------------------------------------


class ShipmentRead(CamelModel):
    id: str
    batch_id: str
    vehicle_id: str
    plate_number: str
    driver_name: str
    driver_id: str
    customer_id: str
    customer_name: str
    supplier_id: str
    supplier_name: str
    coal_price: float
    freight_price: float
    weight: float
    coal_amount: float
    freight_amount: float
    departure_date: str
    arrival_date: Optional[str] = None
    status: str
    created_at: str


# ---------------------------------------------------------------------------
# Arrival records
# ---------------------------------------------------------------------------


class ShipmentSelection(CamelModel):
    shipment_id: str = Field(..., min_length=1)
    # Omitted means the shipment arrived at its departure weight.
    arrival_weight: Optional[float] = Field(default=None, ge=0)


class ArrivalRecordCreate(CamelModel):
    arrival_date: BusinessDate
    customer_id: str = Field(..., min_length=1)
    customer_name: Optional[str] = None
    selling_price_per_ton: float = Field(..., ge=0)
    freight_per_ton: float = Field(..., ge=0)
    related_shipments: List[ShipmentSelection] = Field(default_factory=list)
    # Alternative form: a list of ids plus a weight map keyed by shipment id.
    selected_shipment_ids: List[str] = Field(default_factory=list)
    arrival_weights: Dict[str, float] = Field(default_factory=dict)
    remark: str = ""

    @model_validator(mode="after")
    def _merge_selection(self) -> "ArrivalRecordCreate":
        chosen = {item.shipment_id for item in self.related_shipments}
        for shipment_id in self.selected_shipment_ids:
            if shipment_id in chosen:
                continue
            weight = self.arrival_weights.get(shipment_id)
            if weight is not None and weight < 0:
                raise ValueError(f"arrival weight for {shipment_id} must be >= 0")
            self.related_shipments.append(
                ShipmentSelection(shipment_id=shipment_id, arrival_weight=weight)
            )
            chosen.add(shipment_id)
        if not self.related_shipments:
            raise ValueError("at least one shipment must be selected")
        return self


class ArrivalRecordUpdate(CamelModel):
    arrival_date: Optional[BusinessDate] = None
    customer_id: Optional[str] = Field(default=None, min_length=1)
    customer_name: Optional[str] = None
    selling_price_per_ton: Optional[float] = Field(default=None, ge=0)
    freight_per_ton: Optional[float] = Field(default=None, ge=0)
    actual_received: Optional[float] = Field(default=None, ge=0)
    related_shipments: Optional[Annotated[List[ShipmentSelection], Field(min_length=1)]] = None
    status: Optional[str] = Field(default=None, pattern="^(pending|completed)$")
    remark: Optional[str] = None


class ArrivalShipmentRead(CamelModel):
    id: str
    arrival_record_id: str
    shipment_id: str
    plate_number: str
    driver_name: str
    original_weight: float
    arrival_weight: float
    loss: float
    receivable_amount: float


class ArrivalRecordRead(CamelModel):
    id: str
    arrival_date: str
    customer_id: str
    customer_name: str
    selling_price_per_ton: float
    freight_per_ton: float
    total_weight: float
    total_loss: float
    total_receivable: float
    total_freight_payable: float
    actual_freight_paid: float
    freight_payment_status: str
    actual_received: float
    receivable_payment_status: str
    status: str
    remark: str = ""
    related_shipments: List[ArrivalShipmentRead] = Field(default_factory=list)
    created_at: str


class ArrivalFreightPaymentCreate(CamelModel):
    actual_amount: float = Field(..., ge=0)
    # Blank driver and plate fields are filled from the record's shipments.
    driver_id: Optional[str] = None
    driver_name: Optional[str] = None
    plate_numbers: Optional[List[str]] = None
    calculated_amount: Optional[float] = Field(default=None, ge=0)
    payment_date: BusinessDate = Field(default_factory=date.today)
    remark: str = ""


class FreightSettleRequest(CamelModel):
    payment_date: BusinessDate = Field(default_factory=date.today)


class ReceivablePaymentCreate(CamelModel):
    # Cumulative amount received for the record so far, not an increment.
    actual_received: float = Field(..., ge=0)
    payment_date: BusinessDate = Field(default_factory=date.today)
    remark: str = ""


class FreightSummary(CamelModel):
    arrival_record_id: str
    payable: float
    paid: float
    remaining: float
    settled: bool
    status: str


# ---------------------------------------------------------------------------
# Payment ledgers
# ---------------------------------------------------------------------------


class FreightPaymentCreate(CamelModel):
    driver_id: str = Field(..., min_length=1)
    driver_name: str = ""
    plate_numbers: List[str] = Field(default_factory=list)
    calculated_amount: float = Field(0.0, ge=0)
    actual_amount: float = Field(..., ge=0)
    payment_date: BusinessDate = Field(default_factory=date.today)
    remark: str = ""
    arrival_record_id: Optional[str] = None

    @field_validator("plate_numbers")
    @classmethod
    def _normalize_plates(cls, value: List[str]) -> List[str]:
        return _strip_plates(value)


class FreightPaymentRead(CamelModel):
    id: str
    driver_id: str
    driver_name: str
    plate_numbers: List[str] = Field(default_factory=list)
    calculated_amount: float
    actual_amount: float
    payment_date: str
    remark: str = ""
    arrival_record_id: Optional[str] = None
    created_at: str


class CustomerPaymentCreate(CamelModel):
    customer_id: str = Field(..., min_length=1)
    customer_name: Optional[str] = None
    amount: float = Field(..., ge=0)
    payment_date: BusinessDate = Field(default_factory=date.today)
    remark: str = ""
    arrival_record_id: Optional[str] = None


class CustomerPaymentRead(CamelModel):
    id: str
    customer_id: str
    customer_name: str
    amount: float
    payment_date: str
    remark: str = ""
    arrival_record_id: Optional[str] = None
    created_at: str


class CargoPaymentCreate(CamelModel):
    shipment_id: str = Field(..., min_length=1)
    customer_id: str = ""
    customer_name: Optional[str] = None
    calculated_amount: float = Field(0.0, ge=0)
    actual_amount: float = Field(..., ge=0)
    payment_date: BusinessDate = Field(default_factory=date.today)
    remark: str = ""


class CargoPaymentRead(CamelModel):
    id: str
    shipment_id: str
    customer_id: str
    customer_name: str
    calculated_amount: float
    actual_amount: float
    payment_date: str
    remark: str = ""
    created_at: str


def describe_errors(errors: List[dict]) -> str:
    """Render the first pydantic error as ``field: message``."""
    if not errors:
        return "invalid request"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = str(first.get("msg", "invalid value"))
    return f"{location}: {message}" if location else message


def parse_input(model: Type[InputT], data: Union[InputT, Mapping[str, Any]]) -> InputT:
    """Validate *data* as *model*, raising the service ``ValidationError``."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        errors = exc.errors()
        field = ".".join(str(part) for part in errors[0]["loc"]) if errors else None
        raise ValidationError(describe_errors(errors), field=field) from exc
