"""
Typed projections of stored rows. The store hands out Order objects only, built and
validated here from flat rows, so the lifecycle code never touches storage shapes.
"""
import math
from datetime import datetime
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict

from komek.errors import ValidationError
from komek.order_state import OrderStatus


def _float_or_none(value: Any) -> float | None:
    return float(value) if value is not None else None


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


# Shown when a party has no name on file
CUSTOMER_FALLBACK_NAME = "Заказчик"
SPECIALIST_FALLBACK_NAME = "Специалист"


def coerce_coordinate(value: Any, name: str, limit: float) -> float:
    """Finite number (or numeric string) within [-limit, limit], else ValidationError."""
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{name} must be a number")
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            raise ValidationError(f"{name} must be a number")
    if not isinstance(value, (int, float)):
        raise ValidationError(f"{name} must be a number")
    number = float(value)
    if not math.isfinite(number):
        raise ValidationError(f"{name} must be a finite number")
    if not -limit <= number <= limit:
        raise ValidationError(f"{name} must be between {-limit:g} and {limit:g}")
    return number


def validate_coordinates(latitude: Any, longitude: Any) -> tuple[float, float]:
    return (
        coerce_coordinate(latitude, "latitude", 90.0),
        coerce_coordinate(longitude, "longitude", 180.0),
    )


class Location(BaseModel):
    model_config = ConfigDict(frozen=True)

    latitude: float
    longitude: float
    updated_at: datetime | None = None


class Contact(BaseModel):
    """Name and phone of one party, joined from users at read time."""
    model_config = ConfigDict(frozen=True)

    name: str | None = None
    phone: str | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any], prefix: str) -> "Contact":
        parts = (row.get(f"{prefix}_first_name"), row.get(f"{prefix}_last_name"))
        name = " ".join(p.strip() for p in parts if p and p.strip())
        return cls(name=name or None, phone=row.get(f"{prefix}_phone") or None)


class OrderDraft(BaseModel):
    """Customer-supplied metadata for a new order. Immutable once the order exists."""
    model_config = ConfigDict(frozen=True)

    specialty_id: str | None = None
    description: str | None = None
    proposed_price: float | None = None
    preferred_at: datetime | None = None
    latitude: float | None = None
    longitude: float | None = None
    address_text: str | None = None


class Order(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    customer_id: str
    specialty_id: str
    status: OrderStatus
    specialist_id: str | None = None
    description: str | None = None
    proposed_price: float | None = None
    preferred_at: datetime | None = None
    latitude: float | None = None
    longitude: float | None = None
    address_text: str | None = None
    customer_location: Location | None = None
    specialist_location: Location | None = None
    customer_contact: Contact = Contact()
    specialist_contact: Contact = Contact()
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Order":
        def location(prefix: str) -> Location | None:
            lat = row.get(f"{prefix}_latitude")
            lng = row.get(f"{prefix}_longitude")
            if lat is None or lng is None:
                return None
            return Location(
                latitude=float(lat),
                longitude=float(lng),
                updated_at=row.get(f"{prefix}_location_updated_at"),
            )

        row = dict(row)
        specialist_id = row.get("specialist_id")
        return cls(
            id=str(row["id"]),
            customer_id=str(row["customer_id"]),
            specialty_id=row["specialty_id"],
            status=row["status"],
            specialist_id=str(specialist_id) if specialist_id is not None else None,
            description=row.get("description"),
            proposed_price=_float_or_none(row.get("proposed_price")),
            preferred_at=row.get("preferred_at"),
            latitude=_float_or_none(row.get("latitude")),
            longitude=_float_or_none(row.get("longitude")),
            address_text=row.get("address_text"),
            customer_location=location("customer"),
            specialist_location=location("specialist"),
            customer_contact=Contact.from_row(row, "customer"),
            specialist_contact=Contact.from_row(row, "specialist"),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def to_projection(self) -> dict[str, Any]:
        """JSON shape the mobile and web clients read."""
        spec = self.specialist_location
        cust = self.customer_location
        return {
            "id": self.id,
            "customerId": self.customer_id,
            "customerName": self.customer_contact.name or CUSTOMER_FALLBACK_NAME,
            "customerPhone": self.customer_contact.phone,
            "specialtyId": self.specialty_id,
            "description": self.description,
            "proposedPrice": self.proposed_price,
            "preferredAt": _iso(self.preferred_at),
            "latitude": self.latitude,
            "longitude": self.longitude,
            "addressText": self.address_text,
            "status": self.status.value,
            "specialistId": self.specialist_id,
            "specialistName": self.specialist_contact.name or (SPECIALIST_FALLBACK_NAME if self.specialist_id else None),
            "specialistPhone": self.specialist_contact.phone,
            "specialistLatitude": spec.latitude if spec else None,
            "specialistLongitude": spec.longitude if spec else None,
            "specialistLocationUpdatedAt": _iso(spec.updated_at) if spec else None,
            "customerLatitude": cust.latitude if cust else None,
            "customerLongitude": cust.longitude if cust else None,
            "customerLocationUpdatedAt": _iso(cust.updated_at) if cust else None,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }
