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
Offline tests for SessionHandle.
"""

from unittest.mock import Mock

import pytest

from spannerlink.exceptions import ConnectionError, NotFoundError, RemoteError
from spannerlink.logger import create_default_logger
from spannerlink.remote import RemoteDatabaseClient
from spannerlink.session import SessionHandle


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestSessionHandle:
    """Test lazy session lifecycle and liveness checks"""

    def setup_method(self):
        self.client = Mock(spec=RemoteDatabaseClient)
        self.client.create_session.side_effect = [Mock(name="session-1"), Mock(name="session-2")]
        self.clock = FakeClock()
        self.sessions = SessionHandle(
            self.client, "inst", "db", create_default_logger(), stale_after=60, clock=self.clock
        )

    def test_session_is_created_lazily(self):
        assert not self.sessions.exists
        self.client.create_session.assert_not_called()

        session = self.sessions.acquire()

        assert self.sessions.exists
        assert self.sessions.acquire() is session
        self.client.create_session.assert_called_once_with("inst", "db")

    def test_acquire_updates_last_used(self):
        self.sessions.acquire()
        self.clock.now += 30
        self.sessions.acquire()
        assert self.sessions.last_used == self.clock.now

    def test_create_failure(self):
        self.client.create_session.side_effect = RemoteError("unavailable")
        with pytest.raises(ConnectionError):
            self.sessions.acquire()
        assert not self.sessions.exists

    def test_is_active_without_session(self):
        assert self.sessions.is_active() is False
        self.client.create_session.assert_not_called()

    def test_recent_session_is_active_without_probe(self):
        self.sessions.acquire()
        self.clock.now += 59
        assert self.sessions.is_active() is True
        self.client.execute_query.assert_not_called()

    def test_stale_session_is_probed(self):
        session = self.sessions.acquire()
        self.clock.now += 61
        assert self.sessions.is_active() is True
        self.client.execute_query.assert_called_once_with(session, "SELECT 1")
        assert self.sessions.last_used == self.clock.now

    def test_failed_probe_reports_inactive(self):
        self.sessions.acquire()
        self.clock.now += 61
        used = self.sessions.last_used
        self.client.execute_query.side_effect = NotFoundError("Session not found")

        assert self.sessions.is_active() is False
        assert self.sessions.last_used == used

    def test_release(self):
        session = self.sessions.acquire()
        self.sessions.release()
        self.client.release_session.assert_called_once_with(session)
        assert not self.sessions.exists

    def test_release_without_session_is_noop(self):
        self.sessions.release()
        self.client.release_session.assert_not_called()
        self.client.create_session.assert_not_called()

    def test_failed_release_still_clears_handle(self):
        self.sessions.acquire()
        self.client.release_session.side_effect = RemoteError("unavailable")
        with pytest.raises(RemoteError):
            self.sessions.release()
        assert not self.sessions.exists

    def test_forced_release_swallows_failure(self):
        self.sessions.acquire()
        self.client.release_session.side_effect = NotFoundError("Session not found")
        self.sessions.release(force=True)
        assert not self.sessions.exists

    def test_reset_replaces_session(self):
        first = self.sessions.acquire()
        self.client.release_session.side_effect = NotFoundError("Session not found")

        second = self.sessions.reset()

        assert second is not first
        assert self.sessions.acquire() is second
        self.client.release_session.assert_called_once_with(first)
        assert self.client.create_session.call_count == 2
