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
Offline tests for ClientRegistry.
"""

import threading
from unittest.mock import Mock

from spannerlink.registry import ClientRegistry

CONFIG = {"project": "p", "instance": "inst", "database": "db", "emulator_host": None}


class TestClientRegistry:
    """Test per-target client caching"""

    def setup_method(self):
        self.factory = Mock(side_effect=lambda config: Mock(name=config["database"]))
        self.registry = ClientRegistry(self.factory)

    def test_same_target_shares_client(self):
        first = self.registry.client_for(CONFIG)
        second = self.registry.client_for(dict(CONFIG))
        assert first is second
        self.factory.assert_called_once_with(CONFIG)
        assert "/p/inst/db" in self.registry

    def test_targets_are_keyed_by_database_path(self):
        main = self.registry.client_for(CONFIG)
        other = self.registry.client_for(dict(CONFIG, database="other"))
        emulated = self.registry.client_for(dict(CONFIG, emulator_host="localhost:9010"))
        assert len({id(main), id(other), id(emulated)}) == 3
        assert len(self.registry) == 3

    def test_clear(self):
        first = self.registry.client_for(CONFIG)
        self.registry.clear()
        assert len(self.registry) == 0
        assert self.registry.client_for(CONFIG) is not first

    def test_concurrent_lookups_create_one_client(self):
        barrier = threading.Barrier(8)
        results = []

        def lookup():
            barrier.wait()
            results.append(self.registry.client_for(CONFIG))

        threads = [threading.Thread(target=lookup) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(results) == 8
        assert all(client is results[0] for client in results)
        assert self.factory.call_count == 1
