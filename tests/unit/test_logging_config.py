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

"""Tests for logging_config.py module."""

import logging

import pytest

from jobhound.logging_config import DEFAULT_FORMAT, NOISY_LOGGERS, configure_logging


@pytest.fixture
def restore_noisy_loggers():
    levels = {name: logging.getLogger(name).level for name in NOISY_LOGGERS}
    yield
    for name, level in levels.items():
        logging.getLogger(name).setLevel(level)


class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_sets_package_level(self, restore_noisy_loggers):
        package_logger = configure_logging("warning")

        assert package_logger.name == "jobhound"
        assert package_logger.level == logging.WARNING
        assert logging.getLogger("jobhound.framework.executor").getEffectiveLevel() == logging.WARNING

    def test_unknown_level_falls_back_to_info(self, restore_noisy_loggers):
        assert configure_logging("chatty").level == logging.INFO

    def test_silences_noisy_loggers(self, restore_noisy_loggers):
        configure_logging("DEBUG")
        for name in NOISY_LOGGERS:
            assert logging.getLogger(name).level == logging.WARNING

    def test_handler_added_once(self, restore_noisy_loggers):
        """Test repeated calls do not stack console handlers."""
        package_logger = configure_logging("INFO", add_handler=True)
        configure_logging("INFO", add_handler=True)

        assert len(package_logger.handlers) == 1
        assert package_logger.handlers[0].formatter._fmt == DEFAULT_FORMAT

    def test_no_handler_by_default(self, restore_noisy_loggers):
        assert configure_logging().handlers == []
