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
Session handle for one logical connection.
"""

import time
from typing import Any, Callable, Optional

from .exceptions import ConnectionError, RemoteError
from .logger import SpannerLinkLogger
from .remote import RemoteDatabaseClient

DEFAULT_STALE_AFTER_SECONDS = 50 * 60


class SessionHandle:
    """
    Lazily created session against the remote database.

    The remote session is created on first use and replaced transparently
    after release() or reset(). A session used within the staleness window is
    assumed to still be alive; an older session is probed with ``SELECT 1``.

    Attributes::

        client (RemoteDatabaseClient): Remote client the session belongs to
        instance_id (str): Instance of the target database
        database_id (str): Target database
        stale_after (float): Seconds of idleness after which is_active() probes the server
        last_used (Optional[float]): Clock value of the last acquire()
    """

    def __init__(
        self,
        client: RemoteDatabaseClient,
        instance_id: str,
        database_id: str,
        logger: SpannerLinkLogger,
        stale_after: float = DEFAULT_STALE_AFTER_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.instance_id = instance_id
        self.database_id = database_id
        self.logger = logger
        self.stale_after = stale_after
        self._clock = clock
        self._session = None
        self.last_used: Optional[float] = None

    @property
    def exists(self) -> bool:
        return self._session is not None

    def acquire(self) -> Any:
        """
        Return the current session, creating one if needed.

        Every call counts as a use of the session.

        Raises::

            ConnectionError: If the session cannot be created
        """
        self.last_used = self._clock()
        if self._session is None:
            try:
                self._session = self.client.create_session(self.instance_id, self.database_id)
            except RemoteError as e:
                self.logger.log_session("create", success=False)
                self.logger.log_error(e, context="Session creation")
                raise ConnectionError(f"Failed to create session on {self.instance_id}/{self.database_id}: {e}") from e
            self.logger.log_session("create", session_name=_session_name(self._session))
        return self._session

    def is_active(self) -> bool:
        """
        Check whether the session is usable. Never creates a session and never raises.
        """
        if self._session is None:
            return False
        if self._clock() - self.last_used < self.stale_after:
            return True
        try:
            self.client.execute_query(self._session, "SELECT 1")
        except Exception as e:
            self.logger.debug("Session liveness probe failed", error=e)
            return False
        self.last_used = self._clock()
        return True

    def release(self, force: bool = False) -> None:
        """
        Release the session on the server and forget it locally.

        The local handle is cleared even if the release RPC fails.

        Args::

            force: Swallow (and log) a failing release RPC. Used for teardown
                   of a session that may already be gone on the server.
        """
        if self._session is None:
            return
        session, self._session = self._session, None
        try:
            self.client.release_session(session)
            self.logger.log_session("release", session_name=_session_name(session))
        except RemoteError as e:
            self.logger.log_session("release", session_name=_session_name(session), success=False)
            if not force:
                raise
            self.logger.warning("Ignoring failed release of discarded session", error=e)

    def reset(self) -> Any:
        """Discard the current session and create a new one"""
        self.release(force=True)
        self.logger.log_session("reset")
        return self.acquire()


def _session_name(session: Any) -> Optional[str]:
    return getattr(session, "name", None)
