#!/usr/bin/env python3

# Copyright 2021 - 2022 Matrix Origin
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#      http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Pytest configuration for offline tests

Offline tests run against a Mock of RemoteDatabaseClient; no database or
transport is needed.
"""

import logging

import pytest


def pytest_configure(config):
    """Configure pytest with offline test settings"""
    config.addinivalue_line("markers", "offline: mark test as offline unit test")


def pytest_collection_modifyitems(config, items):
    """Mark every test in this directory as offline"""
    for item in items:
        item.add_marker(pytest.mark.offline)


@pytest.fixture(autouse=True)
def _quiet_sdk_logger():
    """Keep the default SDK logger from flooding test output"""
    logger = logging.getLogger("spannerlink")
    previous = logger.level
    logger.setLevel(logging.CRITICAL)
    yield
    logger.setLevel(previous)
