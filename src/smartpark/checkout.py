"""
Checkout: bill the actual parking time and free the space.

The bill is written first, then the space release and the reservation
archive are issued concurrently. Each write lands on a key derived from the
reservation id, so a checkout retried after a partial failure finishes the
remaining effects without duplicating the ones that already happened.
"""
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Any, Callable, Dict, List, Tuple

from aws_lambda_powertools import Logger

from smartpark.billing import BillingEngine, current_time
from smartpark.errors import ConflictError, NotFoundError, ParkingError
from smartpark.models import (
    PaymentPurpose,
    PaymentRecord,
    PaymentStatus,
    ReservationHistoryRecord,
    ReservationRecord,
    ReservationStatus,
    bill_id_for,
    history_id_for,
)
from smartpark.repositories import Repositories

logger = Logger(child=True)


class CheckoutService:
    def __init__(self, repositories: Repositories, billing: BillingEngine, clock: Callable[[], datetime]):
        self.spaces = repositories.spaces
        self.payments = repositories.payments
        self.reservations = repositories.reservations
        self.history = repositories.history
        self.billing = billing
        self.clock = clock

    @classmethod
    def from_settings(cls, settings, repositories=None) -> "CheckoutService":
        return cls(
            repositories=repositories or Repositories.from_settings(settings),
            billing=BillingEngine(settings.billing_rate),
            clock=lambda: current_time(settings.timezone),
        )

    def check_out(self, space_number: str) -> Dict[str, Any]:
        logger.info("Processing checkout", extra={"spaceNumber": space_number})

        reservation = self.reservations.find_active_by_space(space_number)
        if reservation is None:
            raise NotFoundError(f"Active reservation for parking space {space_number}")
        if reservation.status != ReservationStatus.ACTIVE:
            raise ConflictError("Reservation is not active")

        bill = self.payments.find(bill_id_for(reservation.id))
        if bill is None:
            now = self.clock()
            bill = self._new_bill(reservation, now)
        else:
            # retry of an interrupted checkout: keep the original bill
            logger.warning("Resuming interrupted checkout", extra={"reservationId": reservation.id})

        history = ReservationHistoryRecord(
            id=history_id_for(reservation.id),
            original_reservation_id=reservation.id,
            payment_id=reservation.payment_id,
            bill_id=bill.id,
            space_number=reservation.space_number,
            user_email=reservation.user_email,
            reserve_time=reservation.reserve_time,
            checkout_time=reservation.checkout_time,
            checked_out_at=bill.checkout_time,
            charge=bill.charge,
            status=ReservationStatus.COMPLETED,
            created_at=bill.checkout_time,
        )

        # the active reservation is what a retry finds, so it outlives the bill write
        self.payments.create_if_absent(bill)

        failures = self._apply(
            [
                ("free space", lambda: self.spaces.release(space_number, bill.checkout_time, reservation.id)),
                ("archive reservation", lambda: self._archive(reservation, history)),
            ]
        )
        if failures:
            logger.error(
                "Checkout partially applied",
                extra={"reservationId": reservation.id, "failed": [step for step, _ in failures]},
            )
            raise failures[0][1]

        logger.info(
            "Checkout completed successfully",
            extra={"reservationId": reservation.id, "spaceNumber": space_number, "charge": str(bill.charge)},
        )
        return {
            "reservation": history.to_item(),
            "charge": bill.charge,
            "paymentId": bill.id,
        }

    def _new_bill(self, reservation: ReservationRecord, now: datetime) -> PaymentRecord:
        # billed on actual use, not the requested checkout time
        charge = self.billing.calculate_charge(reservation.reserve_time, now)
        return PaymentRecord(
            id=bill_id_for(reservation.id),
            space_number=reservation.space_number,
            user_email=reservation.user_email,
            reserve_time=reservation.reserve_time,
            checkout_time=now,
            charge=charge,
            payment_status=PaymentStatus.UNPROCESSED,
            purpose=PaymentPurpose.CHECKOUT,
            reservation_id=reservation.id,
            created_at=now,
            updated_at=now,
        )

    def _archive(self, reservation: ReservationRecord, history: ReservationHistoryRecord) -> None:
        self.history.create_if_absent(history)
        self.reservations.delete(reservation.id)

    def _apply(self, steps: List[Tuple[str, Callable[[], Any]]]) -> List[Tuple[str, ParkingError]]:
        """Run the steps concurrently and wait for all of them"""
        failures = []
        with ThreadPoolExecutor(max_workers=len(steps)) as pool:
            futures = [(name, pool.submit(step)) for name, step in steps]
            for name, future in futures:
                try:
                    future.result()
                except ParkingError as e:
                    failures.append((name, e))
        return failures
