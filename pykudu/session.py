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
from collections import OrderedDict
from threading import Lock
from time import time

from .exceptions import (IllegalStateException, InvalidArgumentException, IOErrorException,
                         KuduException, TimedOutException, exception_from_error)
from .request import request

logger = logging.getLogger(__name__)

# Every apply() is flushed before it returns.
AUTO_FLUSH_SYNC = "AUTO_FLUSH_SYNC"
# Nothing is sent until flush() or flush_async() is called.
MANUAL_FLUSH = "MANUAL_FLUSH"

FLUSH_MODES = (AUTO_FLUSH_SYNC, MANUAL_FLUSH)

DEFAULT_TIMEOUT_MILLIS = 10000

# How many row errors a session holds on to. Past this the session only
# remembers that it overflowed.
MAX_PENDING_ERRORS = 1000


# A failed row. status is the exception describing why it failed.
class Error(object):

    def __init__(self, failed_op, status):
        self.failed_op = failed_op
        self.status = status

    # A write that timed out may still have been applied by the server.
    def was_possibly_successful(self):
        return isinstance(self.status, TimedOutException)

    def __repr__(self):
        return "Error(%r, %r)" % (self.failed_op, self.status)


class ErrorCollector(object):

    def __init__(self, max_errors):
        self.max_errors = max_errors
        self._errors = []
        self._overflowed = False
        self._lock = Lock()

    def add_error(self, error):
        with self._lock:
            if len(self._errors) >= self.max_errors:
                self._overflowed = True
                return
            self._errors.append(error)

    def count_errors(self):
        with self._lock:
            return len(self._errors)

    # Hands the errors to the caller and starts over.
    def get_errors(self):
        with self._lock:
            errors, overflowed = self._errors, self._overflowed
            self._errors = []
            self._overflowed = False
            return errors, overflowed


# Buffers row mutations and sends them to the tablet servers.
#
#   session = client.new_session()
#   session.set_flush_mode(MANUAL_FLUSH)
#   session.apply(insert)
#   session.flush()
#
# A failed flush raises IOErrorException; the individual row failures stay
# on the session until get_pending_errors() is called.
class Session(object):

    def __init__(self, client):
        self._client = client
        self._flush_mode = AUTO_FLUSH_SYNC
        self._timeout_millis = DEFAULT_TIMEOUT_MILLIS
        self._ops = []
        self._ops_lock = Lock()
        self._closed = False
        self._errors = ErrorCollector(MAX_PENDING_ERRORS)

    def set_flush_mode(self, mode):
        if mode not in FLUSH_MODES:
            raise InvalidArgumentException("Unknown flush mode %r" % (mode,))
        if self.has_pending_operations():
            raise IllegalStateException("Cannot change flush mode when writes are buffered")
        self._flush_mode = mode

    def flush_mode(self):
        return self._flush_mode

    def set_timeout_millis(self, timeout_millis):
        if timeout_millis < 0:
            raise InvalidArgumentException("Timeout must be >= 0")
        self._timeout_millis = timeout_millis

    # Checks the row against the table schema and buffers it. Nothing goes
    # over the wire unless the session is in AUTO_FLUSH_SYNC mode.
    def apply(self, op):
        if self._closed:
            raise IllegalStateException("Session is closed")
        op.check()
        with self._ops_lock:
            self._ops.append(op)
        if self._flush_mode == AUTO_FLUSH_SYNC:
            self.flush()

    def flush(self):
        self._flush_ops(self._take_ops())

    # Flushes on the client's background thread and calls
    # callback(status) when done, status being None on success or the
    # exception flush() would have raised. Returns the future.
    def flush_async(self, callback=None):
        ops = self._take_ops()

        def _run():
            status = None
            try:
                self._flush_ops(ops)
            except KuduException as e:
                status = e
            if callback is not None:
                try:
                    callback(status)
                except Exception:
                    # Nobody may be waiting on the future to see this.
                    logger.exception("Flush callback %r failed", callback)
            return status
        return self._client._submit(_run)

    def get_pending_errors(self):
        return self._errors.get_errors()

    def count_pending_errors(self):
        return self._errors.count_errors()

    def has_pending_operations(self):
        with self._ops_lock:
            return len(self._ops) > 0

    def count_buffered_operations(self):
        with self._ops_lock:
            return len(self._ops)

    def close(self):
        if self.has_pending_operations():
            raise IllegalStateException("Cannot close a session with pending operations")
        self._closed = True

    def _take_ops(self):
        with self._ops_lock:
            ops, self._ops = self._ops, []
        return ops

    def _flush_ops(self, ops):
        if len(ops) == 0:
            return
        deadline = time() + self._timeout_millis / 1000.0
        failed = self._write(ops, deadline)
        for op, status in failed:
            self._errors.add_error(Error(op, status))
        if failed:
            logger.warning("%d of %d operations failed to flush", len(failed), len(ops))
            raise IOErrorException("Some errors occurred")
        logger.debug("Flushed %d operations", len(ops))

    # Routes ops to their tablets and sends one write per tablet. Returns a
    # list of (op, exception) for every op that failed.
    def _write(self, ops, deadline):
        failed = []
        batches = OrderedDict()
        for op in ops:
            try:
                tablet = self._locate(op, deadline)
            except KuduException as e:
                failed.append((op, e))
                continue
            batches.setdefault(tablet.tablet_id, (tablet, []))[1].append(op)
        for tablet, batch in batches.values():
            failed.extend(self._send_batch(tablet, batch, deadline))
        return failed

    def _locate(self, op, deadline):
        try:
            return self._client._find_hosting_tablet(op.table, op.encoded_key())
        except KuduException as e:
            if time() > deadline:
                raise TimedOutException("Timed out locating the tablet for %s" % op)
            e._handle_exception(self._client, deadline=deadline)
            return self._locate(op, deadline)

    def _send_batch(self, tablet, ops, deadline):
        remaining = deadline - time()
        if remaining <= 0:
            return [(op, TimedOutException("Write timed out after %d ms" % self._timeout_millis))
                    for op in ops]
        rq = request.write_request(tablet, [(op.op_type, op.row.to_payload()) for op in ops],
                                   int(remaining * 1000))
        try:
            body = tablet.server_client._send_request(rq)
        except KuduException as e:
            try:
                e._handle_exception(self._client, dest_tablet=tablet, deadline=deadline)
            except KuduException as unrecoverable:
                return [(op, unrecoverable) for op in ops]
            # The tablet may have moved. Route this batch again from scratch.
            return self._write(ops, deadline)
        return [(ops[row_error["row_index"]], exception_from_error(row_error["error"]))
                for row_error in body.get("per_row_errors", [])]
