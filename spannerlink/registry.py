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
Registry of remote clients, one per target database.
"""

import threading
from typing import Any, Callable, Dict

from .config import database_path
from .remote import RemoteDatabaseClient


class ClientRegistry:
    """
    Lock-protected cache of RemoteDatabaseClient instances.

    Connections to the same target (emulator host, project, instance and
    database) share one client but never share a session. The registry is
    created by the application and passed to each ConnectionManager.

    Example::

        registry = ClientRegistry(lambda config: MyTransportClient(**config))
        with ConnectionManager(get_config(), registry) as conn:
            conn.execute_query("SELECT 1")
        registry.clear()
    """

    def __init__(self, factory: Callable[[Dict[str, Any]], RemoteDatabaseClient]):
        """
        Args::

            factory: Builds a client for a configuration dictionary
        """
        self._factory = factory
        self._clients: Dict[str, RemoteDatabaseClient] = {}
        self._lock = threading.Lock()

    def client_for(self, config: Dict[str, Any]) -> RemoteDatabaseClient:
        """Return the client for the configured target, creating it on first use"""
        key = database_path(config)
        with self._lock:
            client = self._clients.get(key)
            if client is None:
                client = self._factory(config)
                self._clients[key] = client
            return client

    def clear(self) -> None:
        """Forget every cached client"""
        with self._lock:
            self._clients.clear()

    def __contains__(self, path: str) -> bool:
        with self._lock:
            return path in self._clients

    def __len__(self) -> int:
        with self._lock:
            return len(self._clients)
