# Copyright 2025 Vijaykumar Singh <singhvjd@gmail.com>
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Centralized error types for JobHound.

This module provides:
- Error categories for classification and handling
- A base exception carrying structured context (category, details, cause)
- Recovery hints for user-facing messages
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


# =============================================================================
# Error Categories
# =============================================================================


class ErrorCategory(Enum):
    """Categories of errors for classification and handling."""

    # Workflow construction
    GRAPH_INVALID = "graph_invalid"
    STATE_INVALID = "state_invalid"

    # Workflow execution
    STAGE_FAILURE = "stage_failure"
    ROUTING = "routing"

    # Configuration errors
    CONFIG_INVALID = "config_invalid"

    # System errors
    INTERNAL_ERROR = "internal_error"
    UNKNOWN = "unknown"


# =============================================================================
# Base Exception
# =============================================================================


class JobHoundError(Exception):
    """Base exception for all JobHound errors.

    Provides structured error information including:
    - Error category
    - Correlation ID for tracking
    - Recovery suggestions
    - Underlying exception chain
    """

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        details: Optional[Dict[str, Any]] = None,
        recovery_hint: Optional[str] = None,
        correlation_id: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.details = details or {}
        self.recovery_hint = recovery_hint
        self.correlation_id = correlation_id or str(uuid.uuid4())[:8]
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error": self.message,
            "category": self.category.value,
            "correlation_id": self.correlation_id,
            "recovery_hint": self.recovery_hint,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }

    def __str__(self) -> str:
        result = self.message
        if self.recovery_hint:
            result += f"\nRecovery hint: {self.recovery_hint}"
        return result


class ConfigurationError(JobHoundError):
    """Invalid or inconsistent configuration."""

    def __init__(self, message: str, config_key: Optional[str] = None, **kwargs: Any):
        super().__init__(
            message,
            category=ErrorCategory.CONFIG_INVALID,
            recovery_hint="Check JOBHOUND_* environment variables and the settings file.",
            **kwargs,
        )
        self.config_key = config_key
        self.details["config_key"] = config_key


def describe_exception(exc: BaseException) -> str:
    """Render an exception as a stable ``"Type: message"`` string."""
    text = str(exc)
    name = type(exc).__name__
    return f"{name}: {text}" if text else name


__all__ = [
    "ErrorCategory",
    "JobHoundError",
    "ConfigurationError",
    "describe_exception",
]
