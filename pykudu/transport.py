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
import copy
import logging
from threading import Lock

from zope.interface import Interface, implementer

logger = logging.getLogger(__name__)

DEFAULT_MASTER_PORT = 7051
DEFAULT_TSERVER_PORT = 7050


class ITransport(Interface):
    """Opens connections to cluster servers."""

    def connect(host, port):
        """Return an IConnection to host:port.

        Raises ConnectionError if nothing is listening there.
        """


class IConnection(Interface):
    """A connection to one server."""

    def call(method, payload):
        """Send a request and block until its response payload arrives.

        Raises ConnectionError if the server went away.
        """

    def close():
        """Release the connection."""


class IService(Interface):
    """Something that can sit behind an address and answer requests."""

    def handle(method, payload):
        """Return the response payload for a request."""


def parse_endpoint(addr, default_port=DEFAULT_MASTER_PORT):
    # 'host' or 'host:port' -> (host, port)
    addr = addr.strip()
    if not addr:
        raise ValueError("Empty endpoint")
    host, sep, port = addr.rpartition(":")
    if not sep:
        return addr, default_port
    if not host:
        raise ValueError("Bad endpoint: %r" % addr)
    return host, int(port)


@implementer(IConnection)
class LocalConnection(object):

    def __init__(self, transport, location):
        self.transport = transport
        self.location = location
        self.closed = False

    def call(self, method, payload):
        if self.closed:
            raise ConnectionError("Connection to %s is closed" % self.location)
        service = self.transport._lookup(self.location)
        if service is None:
            raise ConnectionError("Connection to %s refused" % self.location)
        # Nothing is shared between the two sides of a call. The copies stand
        # in for serialization.
        response = service.handle(method, copy.deepcopy(payload))
        return copy.deepcopy(response)

    def close(self):
        self.closed = True


# Reaches services living in this process. Servers bind themselves to a
# host:port and clients connect to that same host:port. This is what the
# bundled mini cluster uses.
@implementer(ITransport)
class LocalTransport(object):

    def __init__(self):
        self._services = {}
        self._lock = Lock()

    def bind(self, host, port, service):
        location = "%s:%s" % (host, port)
        with self._lock:
            if location in self._services:
                raise OSError("Address already in use: %s" % location)
            self._services[location] = service
        logger.debug("Bound %s to %s", service, location)

    def unbind(self, host, port):
        with self._lock:
            self._services.pop("%s:%s" % (host, port), None)

    def _lookup(self, location):
        with self._lock:
            return self._services.get(location)

    def connect(self, host, port):
        location = "%s:%s" % (host, port)
        if self._lookup(location) is None:
            raise ConnectionError("Connection to %s refused" % location)
        return LocalConnection(self, location)


# Shared by every client and mini cluster that isn't handed a transport of
# its own.
default_transport = LocalTransport()
