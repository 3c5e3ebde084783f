# src/webhook/app.py
# POST /webhook
from functools import lru_cache

from aws_lambda_powertools import Logger
from aws_lambda_powertools.utilities.typing import LambdaContext

from smartpark import responses
from smartpark.config import get_settings
from smartpark.schemas import header, parse_body, parse_webhook_event
from smartpark.webhooks import SIGNATURE_HEADER, WebhookDispatcher, verify_signature

logger = Logger()


@lru_cache()
def get_dispatcher() -> WebhookDispatcher:
    return WebhookDispatcher.from_settings(get_settings())


@logger.inject_lambda_context
def lambda_handler(event: dict, context: LambdaContext) -> dict:
    logger.info("Processing webhook request")
    try:
        verify_signature(header(event, SIGNATURE_HEADER), get_settings().webhook_secret)
        webhook_event = parse_webhook_event(parse_body(event))
        logger.info("Webhook event received", extra={"eventType": webhook_event.event})
        outcome = get_dispatcher().dispatch(webhook_event)
    except Exception as e:
        return responses.error(e)
    return responses.success(outcome.data, outcome.message)
