"""
Scheduler state management for API integration.

Provides singleton access to the JobAdmissionService instance.
Initialized during FastAPI lifespan.

Usage:
    from ._scheduler_state import get_job_service, init_job_service

    # In lifespan:
    init_job_service(config)

    # In routers:
    service = get_job_service()
"""

from typing import Optional

from src.infra.config import SchedulerConfig
from src.scheduler.service import JobAdmissionService


# Global service instance
_job_service: Optional[JobAdmissionService] = None


def init_job_service(config: Optional[SchedulerConfig] = None) -> JobAdmissionService:
    """
    Initialize the service singleton.

    Called during FastAPI lifespan startup.

    Args:
        config: Scheduler settings (default: load_config())

    Returns:
        Initialized JobAdmissionService
    """
    global _job_service

    if _job_service is not None:
        return _job_service

    _job_service = JobAdmissionService.create(config)
    return _job_service


def set_job_service(service: Optional[JobAdmissionService]) -> None:
    """Install a pre-built service (tests, embedding applications)."""
    global _job_service
    _job_service = service


def get_job_service() -> JobAdmissionService:
    """
    Get the service singleton.

    Raises:
        RuntimeError: If the service is not initialized
    """
    if _job_service is None:
        raise RuntimeError(
            "Job service not initialized. "
            "Ensure init_job_service() is called during startup."
        )

    return _job_service


def shutdown_job_service() -> None:
    """
    Release the service.

    Called during FastAPI lifespan shutdown.
    """
    global _job_service

    if _job_service is not None:
        _job_service.close()
        _job_service = None
