"""Batch processing with time budgets."""

from .processor import (
    BatchConfig,
    BatchItemResult,
    BatchItemStatus,
    BatchProcessor,
    BatchRequest,
    BatchResult,
    BatchTask,
)
from .tasks import DocumentSummaryConfig, DocumentSummaryTask

__all__ = [
    "BatchConfig",
    "BatchItemResult",
    "BatchItemStatus",
    "BatchProcessor",
    "BatchRequest",
    "BatchResult",
    "BatchTask",
    "DocumentSummaryConfig",
    "DocumentSummaryTask",
]
