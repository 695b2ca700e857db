"""
HTTP exceptions for API layer.

These exceptions are used ONLY in API routers to return proper HTTP responses.
They should NOT be used in services or collaborators.
"""

from typing import Self

from fastapi import HTTPException, status


class CustomHTTPException(HTTPException):
    """Base HTTP exception with context support."""

    def with_context(self, detail: str) -> Self:
        """
        Build a copy of this exception carrying ``detail``.

        The module-level instances are shared between requests and are never
        modified.

        Args:
            detail: Additional information about the error

        Returns:
            A new exception with the same status code and headers
        """
        return type(self)(status_code=self.status_code, detail=detail, headers=self.headers)


BAD_REQUEST = CustomHTTPException(
    status_code=status.HTTP_400_BAD_REQUEST,
    detail="Invalid request parameters",
)
