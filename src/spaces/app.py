# src/spaces/app.py
# GET /available-spaces?limit=&cursor=
from functools import lru_cache

from aws_lambda_powertools import Logger
from aws_lambda_powertools.utilities.typing import LambdaContext

from smartpark import responses
from smartpark.config import get_settings
from smartpark.reservations import ReservationService
from smartpark.schemas import PageQuery, query_params, validate

logger = Logger()


@lru_cache()
def get_service() -> ReservationService:
    return ReservationService.from_settings(get_settings())


@logger.inject_lambda_context
def lambda_handler(event: dict, context: LambdaContext) -> dict:
    try:
        query = validate(PageQuery, query_params(event))
        result = get_service().list_available_spaces(query.limit, query.cursor)
    except Exception as e:
        return responses.error(e)
    return responses.success(result)
