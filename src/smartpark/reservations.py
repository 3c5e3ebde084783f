"""
Reservation requests, payment initiation and read-only listings.

A reservation request only creates an unprocessed payment record with the
computed charge. The space itself is reserved later, when the payment
provider confirms the charge through the webhook.
"""
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from aws_lambda_powertools import Logger

from smartpark.billing import BillingEngine, current_time, localize
from smartpark.errors import ConflictError, SpaceUnavailableError, ValidationError
from smartpark.gateway import FlutterwaveClient
from smartpark.models import (
    ParkingSpace,
    PaymentPurpose,
    PaymentRecord,
    PaymentStatus,
    SpaceStatus,
    new_id,
)
from smartpark.repositories import Repositories
from smartpark.schemas import ReserveRequest

logger = Logger(child=True)

# A space hold younger than this may belong to a confirmation still writing
# its reservation record, so it is never treated as stale.
STALE_HOLD_AFTER = timedelta(minutes=5)


class ReservationService:
    def __init__(
        self,
        repositories: Repositories,
        billing: BillingEngine,
        gateway: Optional[FlutterwaveClient],
        clock: Callable[[], datetime],
        timezone: str,
        max_reservation: timedelta = timedelta(hours=24),
        min_reservation: timedelta = timedelta(minutes=10),
    ):
        self.spaces = repositories.spaces
        self.payments = repositories.payments
        self.reservations = repositories.reservations
        self.billing = billing
        self.gateway = gateway
        self.clock = clock
        self.timezone = timezone
        self.max_reservation = max_reservation
        self.min_reservation = min_reservation

    @classmethod
    def from_settings(cls, settings, repositories=None, gateway=None) -> "ReservationService":
        return cls(
            repositories=repositories or Repositories.from_settings(settings),
            billing=BillingEngine(settings.billing_rate),
            gateway=gateway or FlutterwaveClient.from_settings(settings),
            clock=lambda: current_time(settings.timezone),
            timezone=settings.timezone,
            max_reservation=timedelta(hours=settings.max_reservation_hours),
            min_reservation=timedelta(minutes=settings.min_reservation_minutes),
        )

    def make_reservation(self, request: ReserveRequest) -> Dict[str, Any]:
        logger.info("Processing reservation request", extra={"spaceNumber": request.space_number})

        now = self.clock()
        checkout_time = localize(request.checkout_time, self.timezone)
        self.validate_reservation_time(checkout_time, now)

        self.ensure_space_available(request.space_number, now)

        charge = self.billing.calculate_charge(now, checkout_time)
        payment = PaymentRecord(
            id=new_id(),
            space_number=request.space_number,
            user_email=request.email,
            reserve_time=now,
            checkout_time=checkout_time,
            charge=charge,
            payment_status=PaymentStatus.UNPROCESSED,
            purpose=PaymentPurpose.RESERVATION,
            created_at=now,
            updated_at=now,
        )
        self.payments.create(payment)

        logger.info(
            "Reservation created successfully",
            extra={"paymentId": payment.id, "spaceNumber": payment.space_number, "charge": str(charge)},
        )
        return {
            "charge": charge,
            "paymentId": payment.id,
            "spaceNumber": payment.space_number,
            "checkoutTime": checkout_time.isoformat(),
        }

    def validate_reservation_time(self, checkout_time: datetime, now: datetime) -> None:
        if checkout_time <= now:
            raise ValidationError("Checkout time cannot be in the past")

        if checkout_time - now > self.max_reservation:
            hours = int(self.max_reservation.total_seconds() // 3600)
            raise ValidationError(f"Reservation time cannot exceed {hours} hours from now")

        if checkout_time - now < self.min_reservation:
            minutes = int(self.min_reservation.total_seconds() // 60)
            raise ValidationError(f"Minimum reservation time is {minutes} minutes")

    def ensure_space_available(self, space_number: str, now: datetime) -> ParkingSpace:
        """Check the space can take a new reservation, repairing a stale hold.

        A space marked reserved whose reservation record no longer exists is
        left over from an interrupted checkout and is released here. A free
        space that still has an active reservation is the opposite leftover;
        that one is refused until the checkout is retried.
        """
        space = self.spaces.get(space_number)

        if space.status == SpaceStatus.MAINTENANCE:
            raise SpaceUnavailableError(space_number, "is under maintenance")

        if space.reserved or space.status == SpaceStatus.RESERVED:
            if not self._is_stale_hold(space, now):
                raise SpaceUnavailableError(space_number)
            logger.warning(
                "Releasing stale hold on parking space",
                extra={"spaceNumber": space_number, "reservationId": space.reservation_id},
            )
            return self.spaces.release(space_number, now, reservation_id=space.reservation_id)

        active = self.reservations.find_active_by_space(space_number)
        if active is not None:
            logger.warning(
                "Parking space has an unfinished checkout",
                extra={"spaceNumber": space_number, "reservationId": active.id},
            )
            raise SpaceUnavailableError(space_number, "has an unfinished checkout")
        return space

    def _is_stale_hold(self, space: ParkingSpace, now: datetime) -> bool:
        if not space.reservation_id:
            return False
        if space.updated_at is None or now - space.updated_at < STALE_HOLD_AFTER:
            return False
        return self.reservations.find(space.reservation_id) is None

    def process_payment(self, payment_id: str, redirect_url: Optional[str] = None) -> Dict[str, Any]:
        """Move a payment to processing and open a hosted payment page for it"""
        logger.info("Processing payment", extra={"paymentId": payment_id})

        payment = self.payments.get(payment_id)
        if payment.payment_status == PaymentStatus.SUCCESSFUL:
            raise ConflictError("Payment already processed successfully")
        if payment.payment_status == PaymentStatus.FAILED:
            raise ConflictError(f"Payment {payment_id} has failed, request a new reservation")

        self.payments.transition(
            payment_id,
            PaymentStatus.PROCESSING,
            allowed_from=[PaymentStatus.UNPROCESSED, PaymentStatus.PROCESSING],
            now=self.clock(),
        )

        link = self.gateway.initiate_payment(
            amount=payment.charge,
            email=payment.user_email,
            payment_id=payment.id,
            redirect_url=redirect_url,
        )
        return {
            "paymentId": payment.id,
            "paymentLink": link.payment_link,
            "reference": link.reference,
            "amount": payment.charge,
        }

    def list_available_spaces(self, limit: int, cursor: Optional[str] = None) -> Dict[str, Any]:
        items, next_cursor = self.spaces.list_available(limit, cursor)
        spaces = [ParkingSpace.from_item(item).to_item() for item in items]
        return {"items": spaces, "count": len(spaces), "cursor": next_cursor}

    def list_payments(self, email: str, limit: int, cursor: Optional[str] = None) -> Dict[str, Any]:
        items, next_cursor = self.payments.list_by_user_email(email, limit, cursor)
        payments = [PaymentRecord.from_item(item).to_item() for item in items]
        return {"items": payments, "count": len(payments), "cursor": next_cursor}
