# src/payment/app.py
# POST /pay
from functools import lru_cache

from aws_lambda_powertools import Logger
from aws_lambda_powertools.utilities.typing import LambdaContext

from smartpark import responses
from smartpark.config import get_settings
from smartpark.reservations import ReservationService
from smartpark.schemas import PayRequest, parse_body, query_params, validate

logger = Logger()


@lru_cache()
def get_service() -> ReservationService:
    return ReservationService.from_settings(get_settings())


@logger.inject_lambda_context
def lambda_handler(event: dict, context: LambdaContext) -> dict:
    logger.info("Processing payment request")
    try:
        body = parse_body(event)
        # legacy clients ask for the redirect in the query string
        if "redirect" in query_params(event):
            body.setdefault("redirect", query_params(event)["redirect"])
        request = validate(PayRequest, body)
        result = get_service().process_payment(request.payment_id, request.redirect_url)
    except Exception as e:
        return responses.error(e)

    if request.redirect:
        return responses.redirect(result["paymentLink"])
    return responses.success(result, "Payment initiated")
