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
Connection settings for SpannerLink.

Every setting can come from three places. Lowest precedence first:

1. The defaults in SpannerLinkConfig.DEFAULT_CONFIG
2. SPANNERLINK_<KEY> environment variables
3. Keyword arguments

Usage::

    from spannerlink import ClientRegistry, ConnectionManager
    from spannerlink.config import get_config

    config = get_config(instance="prod-instance", database="orders")
    connection = ConnectionManager(config, registry=ClientRegistry(make_client))

Recognised variables:

- SPANNERLINK_PROJECT, SPANNERLINK_INSTANCE, SPANNERLINK_DATABASE: target database
  (defaults test-project, test-instance, testdb)
- SPANNERLINK_EMULATOR_HOST: host:port of an emulator, unset for production
- SPANNERLINK_CREDENTIALS: path to a credentials file
- SPANNERLINK_SCOPE: OAuth scope
- SPANNERLINK_TIMEOUT: per-call RPC deadline in seconds (60)
- SPANNERLINK_ISOLATION_LEVEL: default isolation of read/write transactions (serializable)
- SPANNERLINK_SESSION_STALE_MINUTES: idle minutes before a session is probed (50)
"""

import os
from typing import Any, Dict, Optional

from .exceptions import ConfigurationError

MASKED_KEYS = ("credentials",)


class SpannerLinkConfig:
    """
    Resolves the settings a ConnectionManager is built from.

    Each setting has a default in DEFAULT_CONFIG and an environment variable
    in ENV_MAPPING. Keyword overrides beat the environment, which beats the
    defaults. project, instance and database must end up non-empty, and the
    numeric settings positive.

    Example::

        config = SpannerLinkConfig.get_config(database="orders")
        SpannerLinkConfig.database_path(config)  # "/test-project/test-instance/orders"
    """

    DEFAULT_CONFIG = {
        "project": "test-project",
        "instance": "test-instance",
        "database": "testdb",
        "emulator_host": None,
        "credentials": None,
        "scope": None,
        "timeout": 60,
        "isolation_level": "serializable",
        "session_stale_minutes": 50,
    }

    ENV_MAPPING = {key: "SPANNERLINK_" + key.upper() for key in DEFAULT_CONFIG}

    REQUIRED_KEYS = ("project", "instance", "database")

    NUMERIC_KEYS = ("timeout", "session_stale_minutes")

    @classmethod
    def _env_value(cls, key: str) -> Any:
        name = cls.ENV_MAPPING[key]
        raw = os.environ.get(name)
        if raw is None:
            return cls.DEFAULT_CONFIG[key]
        if key not in cls.NUMERIC_KEYS:
            # An exported but empty variable clears the default
            return raw or None
        try:
            return float(raw) if "." in raw else int(raw)
        except ValueError:
            raise ConfigurationError(f"{name} must be a number, got '{raw}'")

    @classmethod
    def get_config(cls, **overrides) -> Dict[str, Any]:
        """
        Resolve every setting from defaults, environment and ``overrides``.

        Raises::

            ConfigurationError: On an unknown override key, an unparsable
                numeric variable, a missing required value or a non-positive
                number
        """
        unknown = sorted(set(overrides) - set(cls.DEFAULT_CONFIG))
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {unknown}")

        resolved = {key: cls._env_value(key) for key in cls.DEFAULT_CONFIG}
        resolved.update(overrides)

        missing = [key for key in cls.REQUIRED_KEYS if not resolved.get(key)]
        if missing:
            raise ConfigurationError(f"Configuration value '{missing[0]}' is required")
        for key in cls.NUMERIC_KEYS:
            value = resolved[key]
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
                raise ConfigurationError(f"Configuration value '{key}' must be a positive number")
        return resolved

    @classmethod
    def database_path(cls, config: Dict[str, Any]) -> str:
        """Key identifying the target database: ``emulator_host/project/instance/database``"""
        host: Optional[str] = config.get("emulator_host")
        return "/".join([host or "", config["project"], config["instance"], config["database"]])

    @classmethod
    def print_config(cls, **overrides):
        """Print the resolved settings with secrets masked"""
        resolved = cls.get_config(**overrides)
        lines = ["SpannerLink Connection Configuration:", "=" * 40]
        for key, value in resolved.items():
            shown = "*" * 8 if key in MASKED_KEYS and value is not None else value
            lines.append(f"  {key}: {shown}")
        lines.append("=" * 40)
        print("\n".join(lines))


def get_config(**overrides) -> Dict[str, Any]:
    """Shortcut for SpannerLinkConfig.get_config()"""
    return SpannerLinkConfig.get_config(**overrides)


def database_path(config: Dict[str, Any]) -> str:
    return SpannerLinkConfig.database_path(config)


def print_config(**overrides):
    SpannerLinkConfig.print_config(**overrides)
