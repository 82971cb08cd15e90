"""
Deduplication module - job fingerprinting and duplicate admission checks.
"""

from .fingerprint import (
    compute_job_fingerprint,
    fingerprint_preview,
    are_jobs_equivalent,
)
from .duplicate_check import (
    DuplicateAdmissionController,
    DuplicateCheckFields,
)

__all__ = [
    "compute_job_fingerprint",
    "fingerprint_preview",
    "are_jobs_equivalent",
    "DuplicateAdmissionController",
    "DuplicateCheckFields",
]
