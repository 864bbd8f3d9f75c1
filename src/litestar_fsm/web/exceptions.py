"""Exception handling for state machine web endpoints.

This module maps the engine's exception hierarchy onto HTTP responses.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from litestar import Response
from litestar.status_codes import (
    HTTP_404_NOT_FOUND,
    HTTP_409_CONFLICT,
    HTTP_422_UNPROCESSABLE_ENTITY,
    HTTP_423_LOCKED,
    HTTP_500_INTERNAL_SERVER_ERROR,
    HTTP_503_SERVICE_UNAVAILABLE,
)

from litestar_fsm.exceptions import (
    ConditionDeniedError,
    DefinitionError,
    FSMError,
    LockTimeoutError,
    NoSuchTransitionError,
    NotFoundError,
    StorageError,
    TerminalStateError,
    VersionConflictError,
)

if TYPE_CHECKING:  # pragma: no cover
    from litestar import Request

__all__ = ["fsm_error_handler", "status_code_for"]

logger = logging.getLogger(__name__)

# Most specific first.
_STATUS_CODES: tuple[tuple[type[FSMError], int], ...] = (
    (NoSuchTransitionError, HTTP_409_CONFLICT),
    (NotFoundError, HTTP_404_NOT_FOUND),
    (TerminalStateError, HTTP_409_CONFLICT),
    (VersionConflictError, HTTP_409_CONFLICT),
    (LockTimeoutError, HTTP_423_LOCKED),
    (ConditionDeniedError, HTTP_422_UNPROCESSABLE_ENTITY),
    (DefinitionError, HTTP_500_INTERNAL_SERVER_ERROR),
    (StorageError, HTTP_503_SERVICE_UNAVAILABLE),
)


def status_code_for(exc: FSMError) -> int:
    """Pick the HTTP status code for an engine error."""
    for exc_type, status_code in _STATUS_CODES:
        if isinstance(exc, exc_type):
            return status_code
    return HTTP_500_INTERNAL_SERVER_ERROR


def fsm_error_handler(_request: Request, exc: FSMError) -> Response:
    """Exception handler for FSMError.

    Args:
        _request: The Litestar request object.
        exc: The raised engine error.

    Returns:
        Response with the error type, message, retry hint and structured details.
    """
    status_code = status_code_for(exc)
    if status_code >= HTTP_500_INTERNAL_SERVER_ERROR:
        logger.error("Request failed: %s", exc, exc_info=exc)
    return Response(
        content=exc.to_dict(),
        status_code=status_code,
        media_type="application/json",
    )
