"""
   Copyright 2015 Samuel Curley

   Licensed under the Apache License, Version 2.0 (the "License");
   you may not use this file except in compliance with the License.
   You may obtain a copy of the License at

       http://www.apache.org/licenses/LICENSE-2.0

   Unless required by applicable law or agreed to in writing, software
   distributed under the License is distributed on an "AS IS" BASIS,
   WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
   See the License for the specific language governing permissions and
   limitations under the License.
"""
import logging
from contextlib import contextmanager
from threading import Lock

from ..exceptions import TabletServerException, exception_from_error

logger = logging.getLogger(__name__)


@contextmanager
def acquire_timeout(lock, timeout):
    result = lock.acquire(timeout=timeout)
    try:
        yield result
    finally:
        if result:
            lock.release()


# This Client is created once per server (master or tablet server). Handles
# all communication to and from this specific server.
class Client(object):
    # Variables are as follows:
    #   - Host: The hostname of the server
    #   - Port: The port of the server
    #   - Conn: An open connection to the server
    #   - call_id: A monotonically increasing int used as a sequence number for rpcs. This way
    #   we can match responses with the rpc that made the request.

    def __init__(self, host, port):
        self.host = host
        self.port = port
        self.location = "%s:%s" % (host, port)
        self.conn = None

        # Why yes, we do have a mutex protecting a single variable.
        self.call_lock = Lock()
        self.call_id = 0
        # We would like the client to keep track of the tablets that it hosts.
        # That way if we detect a server issue when touching one tablet, we
        # can forget them all at the same time (saving us a significant amount
        # of master lookups).
        self.tablets = []

    # Sends an RPC over the connection and returns the response payload.
    #
    # Requests go out as {"call_id": ..., "body": ...} and come back as
    # {"call_id": ..., "error": ..., "body": ...}. A populated error means a
    # remote exception happened.
    def _send_request(self, rq, lock_timeout=10):
        with acquire_timeout(self.call_lock, lock_timeout) as acquired:
            if acquired:
                my_id = self.call_id
                self.call_id += 1
            else:
                logger.warning('Lock timeout %s RPC to %s', rq.type, self.location)
                raise TabletServerException(server_client=self)
        try:
            response = self.conn.call(rq.type, {"call_id": my_id, "body": rq.payload})
        except ConnectionError:
            raise TabletServerException(self.host, self.port, server_client=self)
        if response.get("call_id") != my_id:
            raise TabletServerException(self.host, self.port, server_client=self)
        error = response.get("error")
        if error is not None:
            logger.debug("%s to %s failed: %s", rq.type, self.location, error)
            raise exception_from_error(error)
        return response.get("body", {})

    # Do any work to close open connections, etc.
    def close(self):
        if self.conn is not None:
            self.conn.close()
        self.tablets = []

    def __repr__(self):
        return "Client(%s)" % self.location


# Creates a new server client. Opens the connection and returns an instance
# of Client, or None if nobody is listening at host:port.
def NewClient(host, port, transport):
    c = Client(host, port)
    try:
        c.conn = transport.connect(host, port)
    except ConnectionError:
        return None
    return c
