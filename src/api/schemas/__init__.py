"""
API Schemas package.

Pydantic models for request/response validation.
"""

from .jobs import (
    JobCreateRequest,
    JobUpdateRequest,
    JobResponse,
    JobListResponse,
    DuplicateJobResponse,
)

__all__ = [
    "JobCreateRequest",
    "JobUpdateRequest",
    "JobResponse",
    "JobListResponse",
    "DuplicateJobResponse",
]
