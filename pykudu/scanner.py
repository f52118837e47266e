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

from .encoded_key import encode_key_component
from .exceptions import IllegalStateException, InvalidArgumentException, KuduException
from .predicates import ColumnRangePredicate
from .request import request
from .row import RowResult

logger = logging.getLogger(__name__)


# Reads rows out of a table, one tablet at a time in key order.
#
#   scanner = Scanner(table)
#   scanner.add_conjunct_predicate(ColumnRangePredicate(col, 5, 600))
#   scanner.open()
#   while scanner.has_more_rows():
#       for row in scanner.next_batch():
#           ...
#
# Rows come back in ascending primary key order, within a batch and across
# batches. A batch may be empty; keep going until has_more_rows() says no.
class Scanner(object):

    def __init__(self, table):
        self.table = table
        self._client = table.client()
        self._schema = table.schema()
        self._predicates = []
        self._projection = self._schema.column_names()
        self._batch_size = request.DEFAULT_SCAN_BATCH_SIZE
        self._is_open = False
        # Encoded key bounds the scan can't leave. None means unbounded.
        self._start_key = b''
        self._end_key = None
        self._empty = False
        # State of the tablet currently being scanned.
        self._tablet = None
        self._scanner_id = None
        self._more_in_tablet = False
        self._data_in_open = False
        self._pending_rows = []

    def add_conjunct_predicate(self, pred):
        if self._is_open:
            raise IllegalStateException("Scanner is already open")
        if not isinstance(pred, ColumnRangePredicate):
            raise ValueError("Malformed predicate provided: %r" % (pred,))
        col = self._schema.column_by_name(pred.column.name)
        if col.type is not pred.column.type:
            raise InvalidArgumentException(
                "Predicate on %s expects type %s, column is %s" %
                (col.name, pred.column.type, col.type))
        self._predicates.append(pred)

    def set_projected_column_names(self, names):
        if self._is_open:
            raise IllegalStateException("Scanner is already open")
        for name in names:
            self._schema.column_by_name(name)
        self._projection = list(names)

    def set_batch_size(self, batch_size):
        if batch_size <= 0:
            raise InvalidArgumentException("Batch size must be positive")
        self._batch_size = batch_size

    def open(self):
        if self._is_open:
            raise IllegalStateException("Scanner is already open")
        self._compute_key_range()
        self._is_open = True
        if self._empty:
            logger.debug("Scan of %s can't match any rows", self.table.name)
            return
        self._open_tablet(self._start_key)

    def has_more_rows(self):
        if not self._is_open or self._empty:
            return False
        return self._data_in_open or self._more_in_tablet or not self._on_last_tablet()

    def next_batch(self):
        if not self._is_open:
            raise IllegalStateException("Scanner is not open")
        if self._empty:
            return []
        if self._data_in_open:
            # The rows that came back with the request opening this tablet.
            self._data_in_open = False
            return self._to_results(self._pending_rows)
        if self._more_in_tablet:
            rq = request.scan_request(self._tablet, None, None, self._batch_size,
                                      False, self._scanner_id)
            body = self._tablet.server_client._send_request(rq)
            self._update_state(body)
            return self._to_results(body.get("rows", []))
        if not self._on_last_tablet():
            # Move on to the tablet right after this one.
            self._open_tablet(self._tablet.end_key)
            self._data_in_open = False
            return self._to_results(self._pending_rows)
        return []

    def close(self):
        if self._more_in_tablet and self._scanner_id is not None:
            rq = request.scan_request(self._tablet, None, None, self._batch_size,
                                      True, self._scanner_id)
            try:
                self._tablet.server_client._send_request(rq)
            except KuduException as e:
                # The server will expire the scanner on its own.
                logger.warning("Failed to close scanner %s: %s", self._scanner_id, e)
        self._more_in_tablet = False
        self._data_in_open = False
        self._is_open = False

    def __enter__(self):
        if not self._is_open:
            self.open()
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()

    # Closes the scanner once iteration stops, early or not.
    def __iter__(self):
        if not self._is_open:
            self.open()
        try:
            while self.has_more_rows():
                for row in self.next_batch():
                    yield row
        finally:
            self.close()

    def _projection_columns(self):
        return [self._schema.column_by_name(name) for name in self._projection]

    def _to_results(self, rows):
        columns = self._projection_columns()
        return [RowResult(columns, row) for row in rows]

    def _on_last_tablet(self):
        end = self._tablet.end_key
        return end == b'' or (self._end_key is not None and end > self._end_key)

    # With a single column primary key, predicates on that column tell us
    # which tablets can hold matching rows. Everything else is left to the
    # tablet servers.
    def _compute_key_range(self):
        if self._schema.num_key_columns != 1:
            return
        key_col = self._schema.column(0)
        lower = upper = None
        for pred in self._predicates:
            if pred.column.name != key_col.name:
                continue
            if pred.lower is not None and (lower is None or pred.lower > lower):
                lower = pred.lower
            if pred.upper is not None and (upper is None or pred.upper < upper):
                upper = pred.upper
        if lower is not None and upper is not None and lower > upper:
            self._empty = True
            return
        if lower is not None:
            self._start_key = encode_key_component(key_col.type, lower, True)
        if upper is not None:
            self._end_key = encode_key_component(key_col.type, upper, True)

    def _open_tablet(self, key):
        tablet = None
        try:
            tablet = self._client._find_hosting_tablet(self.table, key)
            rq = request.scan_request(tablet, self._predicates, self._projection,
                                      self._batch_size, False, None)
            body = tablet.server_client._send_request(rq)
        except KuduException as e:
            # Uh oh. Probably a tablet/tablet server issue. Handle it and try
            # again.
            e._handle_exception(self._client, dest_tablet=tablet)
            return self._open_tablet(key)
        self._tablet = tablet
        self._update_state(body)
        self._pending_rows = body.get("rows", [])
        self._data_in_open = True
        logger.debug("Opened scanner on tablet %s", tablet.tablet_id)

    def _update_state(self, body):
        self._scanner_id = body.get("scanner_id")
        self._more_in_tablet = body.get("has_more_results", False)
