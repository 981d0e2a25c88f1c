"""
typedapi — Error Response Models
=================================

What:  Pydantic models for the JSON body of every framework-generated error.
Why:   Clients parse one error shape regardless of which failure occurred,
       and the OpenAPI document describes it from the same models.
Who:   Built by the server's exception handlers; referenced by openapi.py.

Example:
    {
        "error": "validation_error",
        "message": "Invalid query: page: Expected a string containing a number, got str 'abc'",
        "details": {
            "location": "query",
            "issues": [{"path": "page", "message": "...", "type": "number_from_string"}]
        },
        "request_id": "a1b2c3d4"
    }
"""

from typing import List, Optional

from pydantic import BaseModel, Field


class ValidationIssue(BaseModel):
    """One failing field of a request input."""

    path: str = Field(description="Dotted path of the failing field (empty for the whole value)")
    message: str = Field(description="What was expected and what was received")
    type: str = Field(description="Machine-readable issue kind, e.g. 'missing'")


class ValidationDetails(BaseModel):
    location: Optional[str] = Field(default=None, description="path, query, headers or payload")
    issues: List[ValidationIssue] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    """
    Standardized error response format for all framework-generated errors.

    Fields:
        error: Machine-readable error code (e.g., "validation_error", "route_not_found")
        message: Human-readable description
        details: Optional extra context (validation issues)
        request_id: Correlation ID for tracing this error in server logs
    """

    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")
