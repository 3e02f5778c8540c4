# rest2sftp/utils/responses.py - The two response shapes the gateway produces

import json
import logging
from typing import Any

from fastapi import Response, status
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel

logger = logging.getLogger(__name__)

INTERNAL_SERVER_ERROR_TEXT = "internal server error"


def respond_with_json(status_code: int, payload: Any) -> Response:
    """
    Serializes `payload` (a pydantic model or plain data) as the JSON body.

    A payload that cannot be serialized degrades to a plain-text 500.
    """
    try:
        if isinstance(payload, BaseModel):
            body = payload.model_dump_json(by_alias=True, exclude_none=True)
        else:
            body = json.dumps(payload)
    except (TypeError, ValueError) as e:
        logger.error(f"Failed to serialize response payload: {e}", exc_info=True)
        return PlainTextResponse(INTERNAL_SERVER_ERROR_TEXT, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)

    return Response(content=body, status_code=status_code, media_type="application/json")


def respond_no_content(status_code: int = status.HTTP_200_OK) -> Response:
    """Empty body with an explicit Content-Length of 0."""
    return Response(status_code=status_code, headers={"Content-Length": "0"})
