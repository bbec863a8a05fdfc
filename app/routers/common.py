"""Helpers shared by the JSON routers."""

import json
from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse

from app.services.errors import VoteError, VoteValidationError


async def read_json_payload(request: Request) -> dict:
    """Decode a JSON object body.

    Raises:
        VoteValidationError: If the body is not a JSON object.
    """
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise VoteValidationError("Invalid JSON payload.") from exc
    if not isinstance(payload, dict):
        raise VoteValidationError("Invalid JSON payload.")
    return payload


def clean_str(value) -> Optional[str]:
    """Trim a loosely typed field; blank becomes None."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def error_response(exc: VoteError, status_code: Optional[int] = None) -> JSONResponse:
    return JSONResponse(
        content={"message": exc.message},
        status_code=status_code or exc.status_code,
    )


def message_response(message: str, status_code: int) -> JSONResponse:
    return JSONResponse(content={"message": message}, status_code=status_code)
