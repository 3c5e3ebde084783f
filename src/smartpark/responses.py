"""
API Gateway proxy responses in the {success, message, code?, data?} envelope.
"""
import json
import traceback
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict

from aws_lambda_powertools import Logger

from smartpark.config import get_settings
from smartpark.errors import ParkingError

logger = Logger(child=True)


def _encode(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def headers() -> Dict[str, str]:
    return {
        "Content-Type": "application/json",
        "Access-Control-Allow-Origin": get_settings().primary_origin,
        "Access-Control-Allow-Credentials": "true",
        "Access-Control-Allow-Headers": "Content-Type,Authorization,X-Api-Key,X-Amz-Date,X-Amz-Security-Token",
        "Access-Control-Allow-Methods": "GET,POST,PUT,DELETE,OPTIONS",
        "X-Content-Type-Options": "nosniff",
        "X-Frame-Options": "DENY",
        "X-XSS-Protection": "1; mode=block",
    }


def success(data: Any = None, message: str = "Success", status_code: int = 200) -> Dict[str, Any]:
    body = {
        "success": True,
        "message": message,
        "data": data,
        "timestamp": _timestamp(),
    }
    return {"statusCode": status_code, "headers": headers(), "body": json.dumps(body, default=_encode)}


def error(exc: Exception) -> Dict[str, Any]:
    """Render any exception; unexpected ones become a 500 without internals"""
    if isinstance(exc, ParkingError):
        status_code = exc.status_code
        body = {"success": False, **exc.to_dict()}
        if status_code >= 500:
            logger.error("API Error", extra={"code": exc.code, "error": exc.message, "statusCode": status_code})
        else:
            logger.warning("API Error", extra={"code": exc.code, "error": exc.message, "statusCode": status_code})
    else:
        status_code = 500
        body = {"success": False, "message": "Internal server error", "code": "INTERNAL_ERROR"}
        logger.exception("Unhandled error", exc_info=exc)

    body["timestamp"] = _timestamp()
    if get_settings().is_dev and status_code >= 500:
        body["stack"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))

    return {"statusCode": status_code, "headers": headers(), "body": json.dumps(body, default=_encode)}


def redirect(location: str, status_code: int = 302) -> Dict[str, Any]:
    response_headers = headers()
    response_headers["Location"] = location
    return {"statusCode": status_code, "headers": response_headers, "body": ""}

