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

"""Logging setup for JobHound.

Modules log through ``logging.getLogger(__name__)``; this module only sets
levels and, when asked, a console handler.
"""

from __future__ import annotations

import logging
from typing import Optional

# Third-party loggers that drown out workflow output at DEBUG
NOISY_LOGGERS = [
    "asyncio",
    "httpx",
    "httpcore",
    "urllib3",
    "openai",
    "anthropic",
    "langchain",
    "selenium",
    "playwright",
    "googleapiclient",
]

DEFAULT_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def configure_logging(
    log_level: str = "INFO",
    *,
    add_handler: bool = False,
    fmt: Optional[str] = None,
) -> logging.Logger:
    """Configure the ``jobhound`` logger, silencing noisy third-party loggers.

    Args:
        log_level: Level name for jobhound loggers
        add_handler: Attach a stream handler to the jobhound logger
        fmt: Format string for that handler

    Returns:
        The ``jobhound`` package logger
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    package_logger = logging.getLogger("jobhound")
    package_logger.setLevel(level)

    if add_handler and not package_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(fmt or DEFAULT_FORMAT))
        package_logger.addHandler(handler)

    for logger_name in NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)

    return package_logger


__all__ = ["configure_logging", "NOISY_LOGGERS"]
