"""
DynamoDB repositories for spaces, payments, reservations and history.

All state transitions are conditional writes, so concurrent invocations of
the functions cannot move a record out of a state they did not observe.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from aws_lambda_powertools import Logger
from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import ClientError
from pydantic.alias_generators import to_camel

from smartpark.db import decode_cursor, dynamodb_resource, encode_cursor, table_operation
from smartpark.errors import ConflictError, NotFoundError, SpaceUnavailableError
from smartpark.models import (
    ParkingSpace,
    PaymentRecord,
    PaymentStatus,
    Record,
    ReservationHistoryRecord,
    ReservationRecord,
    ReservationStatus,
    SpaceStatus,
)

logger = Logger(child=True)

Page = Tuple[List[Dict[str, Any]], Optional[str]]


class Repository:
    """Table bound to one record type, keyed by ``key_name``"""

    model = Record
    key_name = "id"
    resource_name = "Record"

    def __init__(self, table):
        self.table = table

    def find(self, key: str):
        with table_operation(f"get {self.resource_name.lower()}"):
            result = self.table.get_item(Key={self.key_name: key}, ConsistentRead=True)
        item = result.get("Item")
        return self.model.from_item(item) if item else None

    def get(self, key: str):
        record = self.find(key)
        if record is None:
            raise NotFoundError(f"{self.resource_name} {key}")
        return record

    def create_if_absent(self, record: Record) -> bool:
        """Put the record unless one with the same key exists; False if it did"""
        logger.debug(f"Creating {self.resource_name.lower()}", extra={"key": getattr(record, "id", None)})
        try:
            with table_operation(f"create {self.resource_name.lower()}"):
                self.table.put_item(
                    Item=record.to_item(),
                    ConditionExpression="attribute_not_exists(#key)",
                    ExpressionAttributeNames={"#key": self.key_name},
                )
        except ClientError:
            return False
        return True

    def _page(self, method, params: Dict[str, Any], cursor: Optional[str], operation: str) -> Page:
        start_key = decode_cursor(cursor)
        if start_key:
            params["ExclusiveStartKey"] = start_key
        with table_operation(operation):
            result = method(**params)
        return result.get("Items", []), encode_cursor(result.get("LastEvaluatedKey"))


class ParkingSpaceRepository(Repository):
    model = ParkingSpace
    key_name = "spaceNumber"
    resource_name = "Parking space"

    def mark_reserved(self, space_number: str, reservation_id: str, reserved_at: datetime, now: datetime) -> ParkingSpace:
        """Reserve the space for reservation_id.

        Succeeds when the space is free or already held by the same
        reservation, so a replayed confirmation is harmless.
        """
        try:
            with table_operation("reserve parking space"):
                result = self.table.update_item(
                    Key={"spaceNumber": space_number},
                    UpdateExpression=(
                        "SET reserved = :true, #status = :reserved, reservationId = :rid, "
                        "reservedAt = :at, updatedAt = :now"
                    ),
                    ConditionExpression=(
                        "attribute_exists(spaceNumber) AND "
                        "((reserved = :false AND #status = :available) OR reservationId = :rid)"
                    ),
                    ExpressionAttributeNames={"#status": "status"},
                    ExpressionAttributeValues={
                        ":true": True,
                        ":false": False,
                        ":reserved": SpaceStatus.RESERVED.value,
                        ":available": SpaceStatus.AVAILABLE.value,
                        ":rid": reservation_id,
                        ":at": reserved_at.isoformat(),
                        ":now": now.isoformat(),
                    },
                    ReturnValues="ALL_NEW",
                )
        except ClientError as e:
            raise SpaceUnavailableError(space_number) from e
        return ParkingSpace.from_item(result["Attributes"])

    def release(self, space_number: str, now: datetime, reservation_id: Optional[str] = None) -> ParkingSpace:
        """Mark the space available.

        With reservation_id given, only a space held by that reservation (or
        already released) is touched.
        """
        condition = "attribute_exists(spaceNumber)"
        values = {
            ":false": False,
            ":available": SpaceStatus.AVAILABLE.value,
            ":now": now.isoformat(),
        }
        if reservation_id:
            condition += " AND (attribute_not_exists(reservationId) OR reservationId = :rid)"
            values[":rid"] = reservation_id
        try:
            with table_operation("release parking space"):
                result = self.table.update_item(
                    Key={"spaceNumber": space_number},
                    UpdateExpression=(
                        "SET reserved = :false, #status = :available, updatedAt = :now "
                        "REMOVE reservationId, reservedAt"
                    ),
                    ConditionExpression=condition,
                    ExpressionAttributeNames={"#status": "status"},
                    ExpressionAttributeValues=values,
                    ReturnValues="ALL_NEW",
                )
        except ClientError as e:
            raise SpaceUnavailableError(space_number, "is held by another reservation") from e
        return ParkingSpace.from_item(result["Attributes"])

    def list_available(self, limit: int, cursor: Optional[str] = None) -> Page:
        # Limit bounds the items read, so a page can hold fewer matches
        params = {
            "FilterExpression": Attr("reserved").eq(False) & Attr("status").eq(SpaceStatus.AVAILABLE.value),
            "Limit": limit,
        }
        return self._page(self.table.scan, params, cursor, "list available spaces")


class PaymentRepository(Repository):
    model = PaymentRecord
    resource_name = "Payment"

    def create(self, payment: PaymentRecord) -> PaymentRecord:
        if not self.create_if_absent(payment):
            raise ConflictError(f"Payment {payment.id} already exists")
        return payment

    def transition(
        self,
        payment_id: str,
        status: PaymentStatus,
        allowed_from: Iterable[PaymentStatus],
        now: datetime,
        **fields: Any,
    ) -> PaymentRecord:
        """Move a payment to ``status`` only if it is currently in allowed_from"""
        allowed = list(allowed_from)
        names = {"#status": "paymentStatus"}
        values = {":status": status.value, ":now": now.isoformat()}
        assignments = ["#status = :status", "updatedAt = :now"]
        for name, value in fields.items():
            if value is None:
                continue
            names[f"#{name}"] = to_camel(name)
            values[f":{name}"] = value
            assignments.append(f"#{name} = :{name}")

        placeholders = []
        for index, prior in enumerate(allowed):
            values[f":from{index}"] = prior.value
            placeholders.append(f":from{index}")

        logger.debug("Updating payment status", extra={"paymentId": payment_id, "status": status.value})
        try:
            with table_operation("update payment status"):
                result = self.table.update_item(
                    Key={"id": payment_id},
                    UpdateExpression="SET " + ", ".join(assignments),
                    ConditionExpression=f"attribute_exists(id) AND #status IN ({', '.join(placeholders)})",
                    ExpressionAttributeNames=names,
                    ExpressionAttributeValues=values,
                    ReturnValues="ALL_NEW",
                )
        except ClientError as e:
            raise ConflictError(f"Payment {payment_id} cannot move to {status.value}") from e
        return PaymentRecord.from_item(result["Attributes"])

    def list_by_user_email(self, email: str, limit: int, cursor: Optional[str] = None) -> Page:
        params = {
            "IndexName": "UserEmailIndex",
            "KeyConditionExpression": Key("userEmail").eq(email),
            "ScanIndexForward": False,
            "Limit": limit,
        }
        return self._page(self.table.query, params, cursor, "get payments by user")


class ReservationRepository(Repository):
    model = ReservationRecord
    resource_name = "Reservation"

    def find_active_by_space(self, space_number: str) -> Optional[ReservationRecord]:
        """Newest active reservation for the space, if any"""
        params = {
            "IndexName": "SpaceNumberIndex",
            "KeyConditionExpression": Key("spaceNumber").eq(space_number),
            "FilterExpression": Attr("status").eq(ReservationStatus.ACTIVE.value),
            "ScanIndexForward": False,
        }
        while True:
            with table_operation("get reservation by space"):
                result = self.table.query(**params)
            items = result.get("Items", [])
            if items:
                return ReservationRecord.from_item(items[0])
            if "LastEvaluatedKey" not in result:
                return None
            params["ExclusiveStartKey"] = result["LastEvaluatedKey"]

    def delete(self, reservation_id: str) -> Optional[ReservationRecord]:
        logger.debug("Deleting reservation", extra={"reservationId": reservation_id})
        with table_operation("delete reservation"):
            result = self.table.delete_item(Key={"id": reservation_id}, ReturnValues="ALL_OLD")
        item = result.get("Attributes")
        return ReservationRecord.from_item(item) if item else None


class ReservationHistoryRepository(Repository):
    model = ReservationHistoryRecord
    resource_name = "Reservation history"


@dataclass
class Repositories:
    spaces: ParkingSpaceRepository
    payments: PaymentRepository
    reservations: ReservationRepository
    history: ReservationHistoryRepository

    @classmethod
    def from_settings(cls, settings, resource=None) -> "Repositories":
        resource = resource or dynamodb_resource(settings.aws_region, settings.db_timeout_seconds)
        return cls(
            spaces=ParkingSpaceRepository(resource.Table(settings.parking_space_table)),
            payments=PaymentRepository(resource.Table(settings.payment_history_table)),
            reservations=ReservationRepository(resource.Table(settings.reservation_table)),
            history=ReservationHistoryRepository(resource.Table(settings.reservation_history_table)),
        )
