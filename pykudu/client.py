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
from concurrent.futures import ThreadPoolExecutor
from threading import Lock

import pykudu.master.locator as locator
import pykudu.rpc.client as rpc
from intervaltree import IntervalTree

from .exceptions import (KuduException, MasterServerException, NoSuchTableException,
                         TabletServerException)
from .request import request
from .schema import schema_from_payload
from .session import Session
from .table import Table, TableAlterer, TableCreator
from .tablet import tablet_from_location
from .transport import default_transport

# Using a tiered logger such that all submodules propagate through to this
# logger. Changing the logging level here should affect all other modules.
logger = logging.getLogger('pykudu')

DEFAULT_ADMIN_OPERATION_TIMEOUT_MILLIS = 5000

# This is hacky but our interval tree requires hard interval stops. So the
# last tablet of a table (end key '') is stored as ending here. If your keys
# start with 64 bytes of '\xff' then this'll cause a cache miss on every
# request.
_MAX_KEY = b'\xff' * 64


class MainClient(object):

    def __init__(self, master_addrs, admin_timeout_millis, transport):
        # Every master we were told about ('host' or 'host:port').
        self.master_addrs = list(master_addrs)
        # Bounds connecting to (and relocating) the leader master.
        self.admin_timeout_millis = admin_timeout_millis
        # How we reach servers. See transport.py.
        self.transport = transport
        # Persistent connection to the leader master.
        self.master_client = None
        # table_id -> IntervalTree. Each tree maps the encoded key ranges we
        # know about to the tablet serving them, so any 'tablet look up' is
        # O(logn).
        self.tablet_cache = {}
        # Takes a client's host:port as key and maps it to a client instance.
        self.reverse_client_cache = {}
        # Mutex used for all caching operations.
        self._cache_lock = Lock()
        # Mutex used so only one thread can request locations from the
        # master at a time.
        self._master_lookup_lock = Lock()
        # Runs asynchronous flushes. Created on first use.
        self._executor = None
        self._executor_lock = Lock()

    """
        HERE LAY CACHE OPERATIONS
    """

    def _add_to_tablet_cache(self, new_tablet):
        stop_key = new_tablet.end_key
        if stop_key == b'':
            stop_key = _MAX_KEY
        # Only let one person touch the cache at once.
        with self._cache_lock:
            tree = self.tablet_cache.setdefault(new_tablet.table, IntervalTree())
            # Get all overlapping tablets (overlapping == stale)
            for stale in tree[new_tablet.start_key:stop_key]:
                self._forget_tablet(stale.data)
            # Remove the overlapping tablets.
            tree.remove_overlap(new_tablet.start_key, stop_key)
            # Insert my tablet.
            tree[new_tablet.start_key:stop_key] = new_tablet
            # Add this tablet to the server client's internal list of all the
            # tablets it serves.
            new_tablet.server_client.tablets.append(new_tablet)

    def _get_from_tablet_cache(self, table_id, key):
        # Only let one person touch the cache at once.
        with self._cache_lock:
            tree = self.tablet_cache.get(table_id)
            if tree is None:
                return None
            # Fetch the tablet that serves this key
            tablets = tree[key]
            try:
                # Returns a set. Pop the element from the set.
                # (there shouldn't be more than 1 elem in the set)
                return tablets.pop().data
            except KeyError:
                # Returned set is empty? Cache miss!
                return None

    def _delete_from_tablet_cache(self, table_id, start_key):
        # Don't acquire the lock because the calling function should have done
        # so already
        tree = self.tablet_cache.get(table_id)
        if tree is not None:
            tree.remove_overlap(start_key)

    def _forget_tablet(self, tablet):
        try:
            tablet.server_client.tablets.remove(tablet)
        except (AttributeError, ValueError):
            pass

    """
        HERE LAY TABLE OPERATIONS
    """

    def open_table(self, table_name):
        body = self._call_master(request.get_table_schema_request(table_name))
        return Table(self, body["table_name"], body["table_id"],
                     schema_from_payload(body["schema"]))

    def delete_table(self, table_name):
        body = self._call_master(request.delete_table_request(table_name))
        with self._cache_lock:
            tree = self.tablet_cache.pop(body.get("table_id"), None)
            if tree is not None:
                for interval in tree:
                    self._forget_tablet(interval.data)
        logger.info("Deleted table %s", table_name)

    def list_tables(self, name_filter=None):
        body = self._call_master(request.list_tables_request(name_filter))
        return body["tables"]

    # Every tablet of the table, in key order.
    def list_tablets(self, table_name):
        table = self.open_table(table_name)
        body = self._call_master(request.get_table_locations_request(table.table_id))
        return [tablet_from_location(loc) for loc in body["tablets"]]

    def new_table_creator(self):
        return TableCreator(self)

    def new_table_alterer(self):
        return TableAlterer(self)

    def new_session(self):
        return Session(self)

    """
        HERE LAY MASTER REQUESTS
    """

    def _call_master(self, rq):
        try:
            return self._send_to_master(rq)
        except KuduException as e:
            # The cool thing about how this is coded is that exceptions know
            # how to handle themselves. If it cannot handle itself
            # (unrecoverable) then it will re-raise the exception in the handle
            # method and we'll die too.
            e._handle_exception(self)
            # Everything should be dandy now. Repeat the request!
            return self._call_master(rq)

    def _send_to_master(self, rq):
        if self.master_client is None:
            raise MasterServerException(message="Not connected to a master")
        try:
            return self.master_client._send_request(rq)
        except TabletServerException:
            # Connection level failures are tablet server exceptions coming
            # out of the rpc client. Convert them to the master equivalent.
            raise MasterServerException(self.master_client.host, self.master_client.port)

    """
        HERE LAY TABLET AND CLIENT DISCOVERY
    """

    def _find_hosting_tablet(self, table, key):
        # Check if it's in the cache already.
        dest_tablet = self._get_from_tablet_cache(table.table_id, key)
        if dest_tablet is None:
            # We have to reach out to master for the results. Only one thread
            # at a time, and once it's our turn we check the cache again to
            # see if the thread before us already fetched what we need.
            with self._master_lookup_lock:
                dest_tablet = self._get_from_tablet_cache(table.table_id, key)
                if dest_tablet is None:
                    logger.debug('Tablet cache miss! Table: %s, Key: %r', table.name, key)
                    dest_tablet = self._discover_tablet(table, key)
        return dest_tablet

    def _discover_tablet(self, table, key):
        rq = request.get_table_locations_request(table.table_id, key)
        body = self._send_to_master(rq)
        locations = body.get("tablets", [])
        # We have a valid response but no tablets? Apparently that means the
        # table doesn't exist anymore!
        if len(locations) == 0:
            raise NoSuchTableException("Table %s does not exist." % table.name)
        return self._create_new_tablet(locations[0])

    def _create_new_tablet(self, location):
        new_tablet = tablet_from_location(location)
        server_loc = new_tablet.server_addr
        with self._cache_lock:
            server_client = self.reverse_client_cache.get(server_loc)
        if server_client is None:
            host, port = server_loc.rsplit(":", 1)
            port = int(port)
            server_client = rpc.NewClient(host, port, self.transport)
            if server_client is None:
                # Welp. We can't connect to the server that the Master
                # supplied. Raise an exception.
                raise TabletServerException(host, port)
            logger.info("Created new Client for tablet server %s", server_loc)
            with self._cache_lock:
                self.reverse_client_cache[server_loc] = server_client
        new_tablet.server_client = server_client
        # Tablet's set up! Add this puppy to the cache so future requests can
        # use it.
        self._add_to_tablet_cache(new_tablet)
        logger.info("Successfully discovered new tablet %s", new_tablet)
        return new_tablet

    def _recreate_master_client(self):
        if self.master_client is not None:
            self.master_client.close()
            self.master_client = None
        self.master_client = locator.locate_master(
            self.master_addrs, self.transport, timeout=self.admin_timeout_millis / 1000.0)

    """
        HERE LAY THE MISCELLANEOUS
    """

    def _purge_client(self, server_client):
        # Given a client to close, purge all of its known hosted tablets from
        # our cache, delete the reverse lookup entry and close the client.
        with self._cache_lock:
            for tablet in server_client.tablets:
                self._delete_from_tablet_cache(tablet.table, tablet.start_key)
            self.reverse_client_cache.pop(server_client.location, None)
            server_client.close()

    def _purge_tablet(self, tablet):
        # Given a tablet, deletes its entry from the cache and removes itself
        # from its server client's tablet list.
        with self._cache_lock:
            self._delete_from_tablet_cache(tablet.table, tablet.start_key)
            self._forget_tablet(tablet)

    def _submit(self, fn):
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(1, thread_name_prefix="pykudu-flush")
            return self._executor.submit(fn)

    def close(self):
        logger.info("Main client received close request.")
        with self._executor_lock:
            if self._executor is not None:
                self._executor.shutdown(wait=True)
                self._executor = None
        if self.master_client is not None:
            self.master_client.close()
            self.master_client = None
        with self._cache_lock:
            self.tablet_cache.clear()
            for location, server_client in self.reverse_client_cache.items():
                server_client.close()
            self.reverse_client_cache = {}

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()


# Collects connection settings and hands back a connected MainClient.
#
#   client = ClientBuilder().master_server_addr("127.0.0.1").build()
class ClientBuilder(object):

    def __init__(self):
        self._master_addrs = []
        self._admin_timeout_millis = DEFAULT_ADMIN_OPERATION_TIMEOUT_MILLIS
        self._transport = None

    def master_server_addr(self, addr):
        self._master_addrs = [addr]
        return self

    def add_master_server_addr(self, addr):
        self._master_addrs.append(addr)
        return self

    def master_server_addrs(self, addrs):
        self._master_addrs = list(addrs)
        return self

    def default_admin_operation_timeout(self, timeout_millis):
        self._admin_timeout_millis = timeout_millis
        return self

    def transport(self, transport):
        self._transport = transport
        return self

    def build(self):
        return NewClient(self._master_addrs, admin_timeout_millis=self._admin_timeout_millis,
                         transport=self._transport)


# Entrypoint into the whole system. Given the locations of the masters this
# function finds the leader and creates the client responsible for future
# master requests (master_client). Returns an instance of MainClient.
def NewClient(master_addrs, admin_timeout_millis=DEFAULT_ADMIN_OPERATION_TIMEOUT_MILLIS,
              transport=None):
    if isinstance(master_addrs, str):
        master_addrs = master_addrs.split(",")
    a = MainClient(master_addrs, admin_timeout_millis, transport or default_transport)
    a._recreate_master_client()
    return a
