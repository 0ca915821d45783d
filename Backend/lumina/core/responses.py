"""
Response envelope shared by every endpoint.

    Success:
        {"data": <payload>, "status": "success", "message": "..."}   # message optional

    Failure:
        {
            "error": {"code": "CONFLICT", "message": "...", "details": {...}},
            "status": "error"
        }

Failure codes are the booking OutcomeCodes; the status code is derived from
them so every screen sees the same mapping.
"""

from typing import Any, Callable, Optional

from fastapi import status
from fastapi.responses import JSONResponse

from ..errors import Outcome, OutcomeCode


HTTP_STATUS_BY_CODE = {
    OutcomeCode.VALIDATION_ERROR: status.HTTP_400_BAD_REQUEST,
    OutcomeCode.OWNERSHIP: status.HTTP_403_FORBIDDEN,
    OutcomeCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    OutcomeCode.CONFLICT: status.HTTP_409_CONFLICT,
    OutcomeCode.STATE_ERROR: status.HTTP_409_CONFLICT,
    OutcomeCode.COLLABORATOR_FAILURE: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def http_status_for(code: OutcomeCode) -> int:
    return HTTP_STATUS_BY_CODE.get(code, status.HTTP_500_INTERNAL_SERVER_ERROR)


def success_response(data: Any, message: Optional[str] = None) -> dict:
    body = {"data": data, "status": "success"}
    if message:
        body["message"] = message
    return body


def error_response(code: str, message: str, details: Optional[dict] = None) -> dict:
    error = {"code": code, "message": message}
    if details:
        error["details"] = details
    return {"error": error, "status": "error"}


def outcome_response(outcome: Outcome, render: Callable = lambda data: data):
    """Envelope for a lifecycle Outcome; failures carry the mapped HTTP status."""
    if not outcome.ok:
        return JSONResponse(
            status_code=http_status_for(outcome.code),
            content=error_response(outcome.code.value, outcome.message, outcome.details),
        )
    return success_response(render(outcome.data), outcome.message)
