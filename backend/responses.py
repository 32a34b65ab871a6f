# responses.py — Structured outcome envelopes
from typing import Any, Dict, Optional

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


def success_response(
    success_type: str,
    message: str,
    data: Any = None,
    details: Optional[Dict[str, Any]] = None,
    status_code: int = 200,
) -> JSONResponse:
    """Standard success envelope: success flag, categorised message and data payload."""
    body: Dict[str, Any] = {
        "success": True,
        "message": {
            "success_type": success_type,
            "success_message": message,
        },
        "data": data,
    }
    if details is not None:
        body["message"]["details"] = details
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


def error_body(
    error_type: str,
    message: str,
    details: Any = None,
    request_id: Optional[str] = None,
) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "success": False,
        "message": {
            "error_type": error_type,
            "error_message": message,
        },
    }
    if details is not None:
        body["message"]["details"] = details
    if request_id:
        body["request_id"] = request_id
    return body


def error_response(
    status_code: int,
    error_type: str,
    message: str,
    details: Any = None,
    request_id: Optional[str] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(error_body(error_type, message, details, request_id)),
        headers=headers,
    )
