from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional

import boto3
import pytest
import pytz
from moto import mock_aws

from smartpark.billing import BillingEngine, BillingRate
from smartpark.checkout import CheckoutService
from smartpark.config import get_settings
from smartpark.gateway import PaymentLink, VerificationResult
from smartpark.models import ParkingSpace, SpaceStatus
from smartpark.repositories import Repositories
from smartpark.reservations import ReservationService
from smartpark.webhooks import WebhookDispatcher

LAGOS = pytz.timezone("Africa/Lagos")
WEBHOOK_SECRET = "test-webhook-secret"

ENVIRONMENT = {
    "AWS_ACCESS_KEY_ID": "testing",
    "AWS_SECRET_ACCESS_KEY": "testing",
    "AWS_SECURITY_TOKEN": "testing",
    "AWS_SESSION_TOKEN": "testing",
    "AWS_DEFAULT_REGION": "us-east-1",
    "AWS_REGION": "us-east-1",
    "STAGE_NAME": "test",
    "TIMEZONE": "Africa/Lagos",
    "BILLING_RATE_PER_UNIT": "105.99",
    "BILLING_UNIT_MINUTES": "10",
    "PARKING_SPACE_TABLE": "parking-spaces-test",
    "RESERVATION_TABLE": "reservations-test",
    "PAYMENT_HISTORY_TABLE": "payment-history-test",
    "RESERVATION_HISTORY_TABLE": "reservation-history-test",
    "ALLOWED_ORIGINS": "https://park.example.com,http://localhost:3002",
    "FLW_SECRET_KEY": "FLWSECK_TEST-secret",
    "WEBHOOK_SECRET": WEBHOOK_SECRET,
    "POWERTOOLS_SERVICE_NAME": "smartpark",
}


@pytest.fixture(autouse=True)
def environment(monkeypatch):
    for name, value in ENVIRONMENT.items():
        monkeypatch.setenv(name, value)
    get_settings.cache_clear()
    yield get_settings()
    get_settings.cache_clear()


def _create_table(resource, name: str, key: str, indexes: Optional[Dict[str, tuple]] = None):
    attributes = {key}
    global_indexes = []
    for index_name, (hash_key, range_key) in (indexes or {}).items():
        attributes.update({hash_key, range_key})
        global_indexes.append({
            "IndexName": index_name,
            "KeySchema": [
                {"AttributeName": hash_key, "KeyType": "HASH"},
                {"AttributeName": range_key, "KeyType": "RANGE"},
            ],
            "Projection": {"ProjectionType": "ALL"},
        })
    params = {
        "TableName": name,
        "KeySchema": [{"AttributeName": key, "KeyType": "HASH"}],
        "AttributeDefinitions": [{"AttributeName": a, "AttributeType": "S"} for a in sorted(attributes)],
        "BillingMode": "PAY_PER_REQUEST",
    }
    if global_indexes:
        params["GlobalSecondaryIndexes"] = global_indexes
    resource.create_table(**params)


@pytest.fixture
def dynamodb(environment):
    with mock_aws():
        resource = boto3.resource("dynamodb", region_name="us-east-1")
        _create_table(resource, environment.parking_space_table, "spaceNumber")
        _create_table(
            resource,
            environment.payment_history_table,
            "id",
            {"UserEmailIndex": ("userEmail", "createdAt")},
        )
        _create_table(
            resource,
            environment.reservation_table,
            "id",
            {
                "UserEmailIndex": ("userEmail", "createdAt"),
                "SpaceNumberIndex": ("spaceNumber", "createdAt"),
            },
        )
        _create_table(resource, environment.reservation_history_table, "id")
        yield resource


@pytest.fixture
def repositories(dynamodb, environment):
    return Repositories.from_settings(environment, resource=dynamodb)


@pytest.fixture
def spaces(repositories):
    """A1 and B1 free, A2 held by a reservation, M1 under maintenance"""
    table = repositories.spaces.table
    table.put_item(Item=ParkingSpace(space_number="A1").to_item())
    table.put_item(Item=ParkingSpace(space_number="B1").to_item())
    table.put_item(Item=ParkingSpace(
        space_number="A2",
        reserved=True,
        status=SpaceStatus.RESERVED,
        reservation_id="held-by-someone",
    ).to_item())
    table.put_item(Item=ParkingSpace(space_number="M1", status=SpaceStatus.MAINTENANCE).to_item())
    return table


class FrozenClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FrozenClock(LAGOS.localize(datetime(2025, 1, 1, 10, 0, 0)))


@pytest.fixture
def billing():
    return BillingEngine(BillingRate(rate_per_unit=Decimal("105.99"), unit=timedelta(minutes=10)))


@dataclass
class FakeGateway:
    """Stands in for FlutterwaveClient; every transaction verifies unless listed"""

    failed_transactions: Dict[str, str] = field(default_factory=dict)
    references: Dict[str, str] = field(default_factory=dict)
    amounts: Dict[str, Decimal] = field(default_factory=dict)
    currencies: Dict[str, str] = field(default_factory=dict)
    initiated: List[dict] = field(default_factory=list)
    verified: List[str] = field(default_factory=list)

    def initiate_payment(self, amount, email, payment_id, redirect_url=None):
        self.initiated.append({
            "amount": amount,
            "email": email,
            "payment_id": payment_id,
            "redirect_url": redirect_url,
        })
        return PaymentLink(payment_link=f"https://checkout.example.com/pay/{payment_id}", reference=payment_id)

    def verify_payment(self, transaction_id):
        self.verified.append(transaction_id)
        if transaction_id in self.failed_transactions:
            return VerificationResult(status=self.failed_transactions[transaction_id], message="Transaction failed")
        return VerificationResult(
            status="successful",
            amount=self.amounts.get(transaction_id),
            currency=self.currencies.get(transaction_id, "NGN"),
            reference=self.references.get(transaction_id),
            payment_method="card",
        )


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def reservation_service(repositories, billing, gateway, clock):
    return ReservationService(
        repositories=repositories,
        billing=billing,
        gateway=gateway,
        clock=clock,
        timezone="Africa/Lagos",
    )


@pytest.fixture
def dispatcher(repositories, gateway, clock):
    return WebhookDispatcher(repositories=repositories, gateway=gateway, clock=clock, currency="NGN")


@pytest.fixture
def checkout_service(repositories, billing, clock):
    return CheckoutService(repositories=repositories, billing=billing, clock=clock)


@dataclass
class LambdaContext:
    function_name: str = "test"
    memory_limit_in_mb: int = 128
    invoked_function_arn: str = "arn:aws:lambda:us-east-1:123456789012:function:test"
    aws_request_id: str = "da658bd3-2d6f-4e7b-8ec2-937234644fdc"


@pytest.fixture
def lambda_context():
    return LambdaContext()
