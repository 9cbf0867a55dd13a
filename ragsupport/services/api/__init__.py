"""Knowledge service exposing ingestion, search and generation over HTTP."""

from ragsupport.services.api.container import ServiceContainer
from ragsupport.services.api.main import app, create_app, register_batch_task

__all__ = [
    "app",
    "create_app",
    "register_batch_task",
    "ServiceContainer",
]
