# src/checkout/app.py
# POST /checkout
from functools import lru_cache

from aws_lambda_powertools import Logger
from aws_lambda_powertools.utilities.typing import LambdaContext

from smartpark import responses
from smartpark.checkout import CheckoutService
from smartpark.config import get_settings
from smartpark.schemas import CheckoutRequest, parse_body, validate

logger = Logger()


@lru_cache()
def get_service() -> CheckoutService:
    return CheckoutService.from_settings(get_settings())


@logger.inject_lambda_context
def lambda_handler(event: dict, context: LambdaContext) -> dict:
    logger.info("Processing checkout request")
    try:
        request = validate(CheckoutRequest, parse_body(event))
        result = get_service().check_out(request.space_number)
    except Exception as e:
        return responses.error(e)

    logger.info("Checkout processed successfully", extra={"spaceNumber": request.space_number})
    return responses.success(result, "Checkout completed successfully")
