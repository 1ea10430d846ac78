from fastapi import HTTPException, status as http_status

from app.core.auth import Principal
from app.services.errors import (
    RepositoryConflictError,
    RepositoryError,
    RepositoryInvalidTransitionError,
    RepositoryNotFoundError,
    RepositoryUnavailableError,
    RepositoryValidationError,
)

_STATUS_BY_ERROR: tuple[tuple[type[RepositoryError], int], ...] = (
    (RepositoryUnavailableError, http_status.HTTP_503_SERVICE_UNAVAILABLE),
    (RepositoryNotFoundError, http_status.HTTP_404_NOT_FOUND),
    (RepositoryConflictError, http_status.HTTP_409_CONFLICT),
    (RepositoryInvalidTransitionError, http_status.HTTP_400_BAD_REQUEST),
    (RepositoryValidationError, http_status.HTTP_422_UNPROCESSABLE_CONTENT),
)


def authorize(principal: Principal, *scopes: str) -> None:
    try:
        principal.require_scopes(set(scopes))
    except PermissionError as exc:
        raise HTTPException(status_code=http_status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc


def repository_http_error(exc: RepositoryError) -> HTTPException:
    for error_cls, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_cls):
            if isinstance(exc, RepositoryValidationError) and exc.field:
                return HTTPException(status_code=status_code, detail={"field": exc.field, "message": str(exc)})
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))
