"""
DynamoDB access shared by the repositories.

Store failures are wrapped into DatabaseError here. Conditional check
failures pass through untouched so each repository can decide what a failed
condition means for its records.
"""
import json
from contextlib import contextmanager
from typing import Any, Dict, Optional
from urllib.parse import quote, unquote

import boto3
from aws_lambda_powertools import Logger
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from smartpark.errors import DatabaseError, ValidationError

logger = Logger(child=True)

CONDITIONAL_CHECK_FAILED = "ConditionalCheckFailedException"


def dynamodb_resource(region: str, timeout_seconds: float):
    config = Config(
        region_name=region,
        connect_timeout=timeout_seconds,
        read_timeout=timeout_seconds,
        retries={"max_attempts": 2, "mode": "standard"},
    )
    return boto3.resource("dynamodb", config=config)


def is_condition_failure(error: ClientError) -> bool:
    return error.response.get("Error", {}).get("Code") == CONDITIONAL_CHECK_FAILED


@contextmanager
def table_operation(operation: str):
    try:
        yield
    except ClientError as e:
        if is_condition_failure(e):
            raise
        error = e.response.get("Error", {})
        logger.error(
            f"{operation} failed",
            extra={
                "error": error.get("Message", str(e)),
                "code": error.get("Code"),
                "statusCode": e.response.get("ResponseMetadata", {}).get("HTTPStatusCode"),
            },
        )
        raise DatabaseError(f"{operation} failed: {error.get('Message', str(e))}") from e
    except BotoCoreError as e:
        logger.error(f"{operation} failed", extra={"error": str(e)})
        raise DatabaseError(f"{operation} failed: {e}") from e


def encode_cursor(last_evaluated_key: Optional[Dict[str, Any]]) -> Optional[str]:
    """Opaque continuation token for a page's LastEvaluatedKey"""
    if not last_evaluated_key:
        return None
    return quote(json.dumps(last_evaluated_key, sort_keys=True, default=str), safe="")


def decode_cursor(cursor: Optional[str]) -> Optional[Dict[str, Any]]:
    if not cursor:
        return None
    try:
        key = json.loads(unquote(cursor))
    except ValueError as e:
        raise ValidationError("Invalid pagination cursor") from e
    if not isinstance(key, dict) or not all(isinstance(value, str) for value in key.values()):
        raise ValidationError("Invalid pagination cursor")
    return key
