from fastapi import HTTPException, status

from ...domain.errors import ConflictError, NotFoundError


def to_http_exception(exc: ValueError) -> HTTPException:
    """Translate a domain error into the matching HTTP status."""
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, ConflictError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
