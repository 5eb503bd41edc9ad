"""
Utility modules for the deal flow transcript sync layer.

This package contains:
- config: Configuration management with Pydantic
- logger: Structured logging setup
- exceptions: Custom exception classes
- deduplication: Insight bullet and transcript deduplication
- clock: Real and virtual clocks for the sync loops
"""

from dealflow_sync.utils.clock import Clock, ManualClock, SystemClock
from dealflow_sync.utils.config import Settings, get_settings, reload_settings
from dealflow_sync.utils.deduplication import (
    DuplicateDetector,
    get_segments_fingerprint,
)
from dealflow_sync.utils.exceptions import (
    AnalysisFailedError,
    ConfigurationError,
    DealSyncError,
    MomentumComputeFailedError,
    PermanentProviderError,
    PersistenceError,
    RateLimitError,
    SessionAlreadyActiveError,
    TranscriptProviderError,
    TransientProviderError,
    ValidationError,
)
from dealflow_sync.utils.logger import (
    get_contextual_logger,
    get_logger,
    setup_logging,
)

__all__ = [
    "Clock",
    "ManualClock",
    "SystemClock",
    "Settings",
    "get_settings",
    "reload_settings",
    "DuplicateDetector",
    "get_segments_fingerprint",
    "get_contextual_logger",
    "get_logger",
    "setup_logging",
    "AnalysisFailedError",
    "ConfigurationError",
    "DealSyncError",
    "MomentumComputeFailedError",
    "PermanentProviderError",
    "PersistenceError",
    "RateLimitError",
    "SessionAlreadyActiveError",
    "TranscriptProviderError",
    "TransientProviderError",
    "ValidationError",
]
