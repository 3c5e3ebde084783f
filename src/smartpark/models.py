"""
Stored records: parking spaces, payments, reservations and their history.

Python attributes are snake_case; the DynamoDB items use the camelCase
aliases. Timestamps are kept as aware datetimes and stored as ISO-8601
strings, amounts as Decimal (which is what boto3 expects for numbers).
"""
import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, PlainSerializer
from pydantic.alias_generators import to_camel

IsoDatetime = Annotated[datetime, PlainSerializer(lambda value: value.isoformat(), return_type=str)]


class SpaceStatus(str, Enum):
    AVAILABLE = "available"
    RESERVED = "reserved"
    MAINTENANCE = "maintenance"


class PaymentStatus(str, Enum):
    UNPROCESSED = "unprocessed"
    PROCESSING = "processing"
    SUCCESSFUL = "successful"
    FAILED = "failed"


class PaymentPurpose(str, Enum):
    RESERVATION = "reservation"
    CHECKOUT = "checkout"


class ReservationStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


class Record(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
        validate_default=True,
        extra="ignore",
    )

    def to_item(self) -> Dict[str, Any]:
        """DynamoDB item for this record, also used as the response shape"""
        return self.model_dump(by_alias=True, exclude_none=True)

    @classmethod
    def from_item(cls, item: Dict[str, Any]):
        return cls.model_validate(item)


class ParkingSpace(Record):
    space_number: str
    reserved: bool = False
    status: SpaceStatus = SpaceStatus.AVAILABLE
    reservation_id: Optional[str] = None
    reserved_at: Optional[IsoDatetime] = None
    updated_at: Optional[IsoDatetime] = None

    @property
    def is_reservable(self) -> bool:
        return not self.reserved and self.status == SpaceStatus.AVAILABLE


class PaymentRecord(Record):
    id: str
    space_number: str
    user_email: str
    reserve_time: IsoDatetime
    checkout_time: IsoDatetime
    charge: Decimal
    payment_status: PaymentStatus = PaymentStatus.UNPROCESSED
    purpose: PaymentPurpose = PaymentPurpose.RESERVATION
    reservation_id: Optional[str] = None
    transaction_id: Optional[str] = None
    payment_method: Optional[str] = None
    created_at: Optional[IsoDatetime] = None
    updated_at: Optional[IsoDatetime] = None

    @property
    def is_settled(self) -> bool:
        return self.payment_status == PaymentStatus.SUCCESSFUL


class ReservationRecord(Record):
    id: str
    payment_id: str
    space_number: str
    user_email: str
    reserve_time: IsoDatetime
    checkout_time: IsoDatetime
    status: ReservationStatus = ReservationStatus.ACTIVE
    created_at: Optional[IsoDatetime] = None
    updated_at: Optional[IsoDatetime] = None


class ReservationHistoryRecord(Record):
    """Append-only copy of a checked-out reservation"""

    id: str
    original_reservation_id: str
    payment_id: str
    bill_id: str
    space_number: str
    user_email: str
    reserve_time: IsoDatetime
    checkout_time: IsoDatetime
    checked_out_at: IsoDatetime
    charge: Decimal
    status: ReservationStatus = ReservationStatus.COMPLETED
    created_at: Optional[IsoDatetime] = None


# Derived ids make the confirmation and checkout writes replayable: a retried
# webhook or checkout lands on the same keys instead of creating new records.
_ID_NAMESPACE = uuid.UUID("6f1d3c9e-4b1a-5c52-9a77-1d2f0e8b3a41")


def reservation_id_for(payment_id: str) -> str:
    return str(uuid.uuid5(_ID_NAMESPACE, f"reservation:{payment_id}"))


def bill_id_for(reservation_id: str) -> str:
    return str(uuid.uuid5(_ID_NAMESPACE, f"bill:{reservation_id}"))


def history_id_for(reservation_id: str) -> str:
    return str(uuid.uuid5(_ID_NAMESPACE, f"history:{reservation_id}"))


def new_id() -> str:
    return str(uuid.uuid4())
