"""Shared router dependencies and error translation."""

import logging
from typing import NoReturn

from fastapi import Header, HTTPException, status

from modeler.domain.errors import BadRequestError, InternalServerError, NotFoundError


logger = logging.getLogger(__name__)

DEFAULT_USER_ID = "admin"


def current_user_id(x_user_id: str | None = Header(None)) -> str:
    """Acting user, taken from the `X-User-Id` header."""
    if x_user_id and x_user_id.strip():
        return x_user_id.strip()
    return DEFAULT_USER_ID


def raise_http(exc: Exception) -> NoReturn:
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, BadRequestError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    if isinstance(exc, InternalServerError):
        # Message stays in the log; clients get a generic detail
        logger.error("request_failed | error=%s", exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal server error"
        ) from exc
    raise exc
