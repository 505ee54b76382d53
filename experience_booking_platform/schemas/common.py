"""
Common schemas for API responses and error handling.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class ErrorDetail(BaseModel):
    """Schema for detailed error information."""

    error_code: str = Field(..., description="Error code for programmatic handling")
    message: str = Field(..., description="Human-readable error message")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional error context")
    suggestions: Optional[List[str]] = Field(None, description="Helpful suggestions for resolving the error")
    retry_after: Optional[int] = Field(None, description="Seconds to wait before retrying")


class ErrorResponse(BaseModel):
    """Schema for API error responses."""

    error: ErrorDetail
    error_id: Optional[str] = None
    timestamp: Optional[datetime] = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "error": {
                        "error_code": "CAPACITY_EXCEEDED",
                        "message": "Insufficient capacity: only 2 spots available",
                        "details": {
                            "spots_available": 2,
                            "requested": 3,
                            "session_id": "123e4567-e89b-12d3-a456-426614174000"
                        },
                        "suggestions": [
                            "Try booking fewer tickets",
                            "Choose another session"
                        ]
                    }
                },
                {
                    "error": {
                        "error_code": "INVALID_ADD_ON",
                        "message": "Add-on 9b1f... is not available for this event",
                        "details": {"add_on_id": "9b1f...", "event_id": "4c2a..."}
                    }
                },
                {
                    "error": {
                        "error_code": "CONCURRENCY_CONFLICT",
                        "message": "Session was modified by another booking. Please try again.",
                        "suggestions": ["Please try again"]
                    }
                }
            ]
        }
    }


class SuccessResponse(BaseModel):
    """Schema for simple success responses."""

    message: str = Field(..., description="Success message")
    data: Optional[Dict[str, Any]] = Field(None, description="Additional response data")
