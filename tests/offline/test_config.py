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
Offline tests for configuration management.
"""

import os
from unittest.mock import patch

import pytest

from spannerlink.config import (
    SpannerLinkConfig,
    database_path,
    get_config,
    print_config,
)
from spannerlink.exceptions import ConfigurationError


class TestSpannerLinkConfig:
    """Test configuration precedence and validation"""

    def setup_method(self):
        # Start from a clean environment for every test
        self.env = patch.dict(os.environ, {}, clear=True)
        self.env.start()

    def teardown_method(self):
        self.env.stop()

    def test_defaults(self):
        config = get_config()
        assert config == SpannerLinkConfig.DEFAULT_CONFIG

    def test_env_overrides_defaults(self):
        os.environ["SPANNERLINK_INSTANCE"] = "prod"
        os.environ["SPANNERLINK_TIMEOUT"] = "15"
        os.environ["SPANNERLINK_SESSION_STALE_MINUTES"] = "2.5"
        config = get_config()
        assert config["instance"] == "prod"
        assert config["timeout"] == 15
        assert config["session_stale_minutes"] == 2.5

    def test_overrides_win_over_env(self):
        os.environ["SPANNERLINK_DATABASE"] = "from_env"
        config = get_config(database="from_args")
        assert config["database"] == "from_args"

    def test_empty_env_value_means_unset(self):
        os.environ["SPANNERLINK_EMULATOR_HOST"] = ""
        assert get_config()["emulator_host"] is None

    def test_non_numeric_env_value(self):
        os.environ["SPANNERLINK_TIMEOUT"] = "soon"
        with pytest.raises(ConfigurationError):
            get_config()

    def test_unknown_override(self):
        with pytest.raises(ConfigurationError):
            get_config(hostname="localhost")

    def test_required_value(self):
        with pytest.raises(ConfigurationError):
            get_config(database="")

    def test_non_positive_number(self):
        with pytest.raises(ConfigurationError):
            get_config(session_stale_minutes=0)

    def test_config_carries_transport_settings(self):
        config = get_config(project="p", instance="i", database="d", credentials="/key.json", timeout=5)
        assert set(config) == set(SpannerLinkConfig.DEFAULT_CONFIG)
        assert config["credentials"] == "/key.json"
        assert config["timeout"] == 5

    def test_database_path(self):
        config = get_config(project="p", instance="i", database="d")
        assert database_path(config) == "/p/i/d"
        config["emulator_host"] = "localhost:9010"
        assert database_path(config) == "localhost:9010/p/i/d"

    def test_print_config_masks_credentials(self, capsys):
        print_config(credentials="/secret/key.json")
        output = capsys.readouterr().out
        assert "/secret/key.json" not in output
        assert "credentials: ********" in output
        assert "database: testdb" in output
