# src/reservation/app.py
# POST /reserve
from functools import lru_cache

from aws_lambda_powertools import Logger
from aws_lambda_powertools.utilities.typing import LambdaContext

from smartpark import responses
from smartpark.config import get_settings
from smartpark.reservations import ReservationService
from smartpark.schemas import ReserveRequest, parse_body, validate

logger = Logger()


@lru_cache()
def get_service() -> ReservationService:
    return ReservationService.from_settings(get_settings())


@logger.inject_lambda_context
def lambda_handler(event: dict, context: LambdaContext) -> dict:
    logger.info("Processing make reservation request")
    try:
        request = validate(ReserveRequest, parse_body(event))
        result = get_service().make_reservation(request)
    except Exception as e:
        return responses.error(e)
    return responses.success(result, "Proceed to payment")
