"""Common utilities and shared components."""

from ragsupport.common.config import Settings, get_settings
from ragsupport.common.errors import (
    ConfigurationError,
    ConflictError,
    ErrorKind,
    ExternalServiceError,
    InvalidInputError,
    ParseError,
    PipelineError,
    RAGSupportError,
)
from ragsupport.common.logging import LoggerMixin, get_logger, setup_logging
from ragsupport.common.models import BaseModel, BaseRequest, BaseResponse

__all__ = [
    "Settings",
    "get_settings",
    "get_logger",
    "setup_logging",
    "LoggerMixin",
    "BaseModel",
    "BaseRequest",
    "BaseResponse",
    "RAGSupportError",
    "ConfigurationError",
    "InvalidInputError",
    "ConflictError",
    "ParseError",
    "ExternalServiceError",
    "PipelineError",
    "ErrorKind",
]
