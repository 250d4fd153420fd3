"""Scheduling backend: abstract interface and the REST implementation."""

from .base import (
    ApiCallRecord,
    BackendError,
    SchedulingBackend,
    capture_api_calls,
)
from .http import HttpSchedulingBackend

__all__ = [
    "ApiCallRecord",
    "BackendError",
    "HttpSchedulingBackend",
    "SchedulingBackend",
    "capture_api_calls",
]
