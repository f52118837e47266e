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
import uuid
from bisect import bisect_left, bisect_right, insort
from threading import Lock

from zope.interface import implementer

from ..encoded_key import encode_key
from ..exceptions import KuduException, error_codes
from ..predicates import _from_predicate
from ..row import PartialRow
from ..schema import (ColumnSchema, Schema, column_from_payload, schema_from_payload,
                      schema_to_payload)
from ..transport import IService, default_transport, parse_endpoint

logger = logging.getLogger(__name__)

# A cluster living inside this process, reachable through a LocalTransport.
# Everything is kept in memory and nothing is replicated. It exists so the
# client (and the sample) can be exercised without a real deployment.
#
#   with MiniCluster("127.0.0.1:7051") as cluster:
#       client = NewClient(cluster.master_addr)
#       ...

# exception class -> error code, so server side validation can reuse the
# client's own checks and still answer in wire form.
_codes = dict((cls, code) for code, cls in error_codes.items())


class ServerError(Exception):

    def __init__(self, code, message):
        super(ServerError, self).__init__("%s: %s" % (code, message))
        self.code = code
        self.message = message

    def to_error(self):
        return {"code": self.code, "message": self.message}


def _error_from_exception(e):
    for cls in type(e).__mro__:
        if cls in _codes:
            return {"code": _codes[cls], "message": str(e)}
    return {"code": "IO_ERROR", "message": str(e)}


class _MiniServer(object):

    def __init__(self, host, port, transport):
        self.host = host
        self.port = port
        self.transport = transport
        self.running = False

    @property
    def location(self):
        return "%s:%s" % (self.host, self.port)

    def start(self):
        self.transport.bind(self.host, self.port, self)
        self.running = True
        logger.info("%s listening on %s", self.__class__.__name__, self.location)

    def shutdown(self):
        self.transport.unbind(self.host, self.port)
        self.running = False
        logger.info("%s on %s shut down", self.__class__.__name__, self.location)

    def handle(self, method, payload):
        rsp = {"call_id": payload.get("call_id")}
        handler = getattr(self, "_handle_" + method, None)
        try:
            if handler is None:
                raise ServerError("INVALID_ARGUMENT", "Unknown method %s" % method)
            rsp["body"] = handler(payload.get("body", {}))
        except ServerError as e:
            rsp["error"] = e.to_error()
        except KuduException as e:
            rsp["error"] = _error_from_exception(e)
        return rsp

    def _handle_Ping(self, body):
        return {}


class TableInfo(object):

    def __init__(self, table_id, name, schema, num_replicas):
        self.table_id = table_id
        self.name = name
        self.schema = schema
        self.num_replicas = num_replicas
        # TabletInfo, sorted by start key.
        self.tablets = []

    def tablet_for_key(self, key):
        starts = [t.start_key for t in self.tablets]
        return self.tablets[bisect_right(starts, key) - 1]


class TabletInfo(object):

    def __init__(self, table_id, tablet_id, start_key, end_key, tserver):
        self.table_id = table_id
        self.tablet_id = tablet_id
        self.start_key = start_key
        self.end_key = end_key
        self.tserver = tserver

    def to_location(self):
        return {
            "table": self.table_id,
            "tablet_id": self.tablet_id,
            "start_key": self.start_key,
            "end_key": self.end_key,
            "server": self.tserver.location,
        }


@implementer(IService)
class MiniMaster(_MiniServer):

    def __init__(self, host, port, transport, tablet_servers):
        super(MiniMaster, self).__init__(host, port, transport)
        self.tablet_servers = tablet_servers
        self.tables = {}
        self._lock = Lock()
        self._next_tserver = 0

    def _handle_Ping(self, body):
        return {"is_leader": True}

    def _get_table(self, table_name):
        try:
            return self.tables[table_name]
        except KeyError:
            raise ServerError("TABLE_NOT_FOUND", "The table %s does not exist" % table_name)

    def _get_table_by_id(self, table_id):
        for info in self.tables.values():
            if info.table_id == table_id:
                return info
        raise ServerError("TABLE_NOT_FOUND", "The table with id %s does not exist" % table_id)

    def _pick_tserver(self):
        live = [ts for ts in self.tablet_servers if ts.running]
        if len(live) == 0:
            raise ServerError("ILLEGAL_STATE", "No tablet servers are running")
        tserver = live[self._next_tserver % len(live)]
        self._next_tserver += 1
        return tserver

    def _handle_CreateTable(self, body):
        name = body.get("table_name")
        if not name:
            raise ServerError("INVALID_ARGUMENT", "Missing table name")
        schema = schema_from_payload(body.get("schema", {}))
        splits = body.get("split_keys", [])
        if splits != sorted(set(splits)) or b'' in splits:
            raise ServerError("INVALID_ARGUMENT", "Split keys must be unique, sorted and non-empty")
        num_replicas = body.get("num_replicas", 1)
        live = len([ts for ts in self.tablet_servers if ts.running])
        if not 1 <= num_replicas <= live:
            raise ServerError("INVALID_ARGUMENT",
                              "Cannot place %d replicas on %d tablet servers" %
                              (num_replicas, live))
        with self._lock:
            if name in self.tables:
                raise ServerError("ALREADY_PRESENT", "Table %s already exists" % name)
            info = TableInfo(uuid.uuid4().hex, name, schema, num_replicas)
            bounds = [b''] + splits + [b'']
            for start, end in zip(bounds, bounds[1:]):
                tserver = self._pick_tserver()
                tablet = TabletInfo(info.table_id, uuid.uuid4().hex, start, end, tserver)
                tserver.create_tablet(tablet.tablet_id, schema, start, end)
                info.tablets.append(tablet)
            self.tables[name] = info
        logger.info("Created table %s (%s) with %d tablets",
                    name, info.table_id, len(info.tablets))
        return {"table_id": info.table_id}

    def _handle_AlterTable(self, body):
        with self._lock:
            info = self._get_table(body.get("table_name"))
            new_name = body.get("new_table_name")
            if new_name is not None and new_name != info.name and new_name in self.tables:
                raise ServerError("ALREADY_PRESENT", "Table %s already exists" % new_name)
            steps = body.get("steps", [])
            # Everything is validated against a scratch copy first. Only once
            # every step went through does anything change.
            new_schema = _apply_alter_steps(info.schema, steps)
            info.schema = new_schema
            for tablet in info.tablets:
                tablet.tserver.alter_tablet(tablet.tablet_id, new_schema, steps)
            if new_name is not None and new_name != info.name:
                del self.tables[info.name]
                info.name = new_name
                self.tables[new_name] = info
        logger.info("Altered table %s (%d steps)", info.name, len(steps))
        return {"table_id": info.table_id}

    def _handle_DeleteTable(self, body):
        with self._lock:
            info = self._get_table(body.get("table_name"))
            del self.tables[info.name]
        for tablet in info.tablets:
            tablet.tserver.delete_tablet(tablet.tablet_id)
        logger.info("Deleted table %s (%s)", info.name, info.table_id)
        return {"table_id": info.table_id}

    def _handle_GetTableSchema(self, body):
        with self._lock:
            info = self._get_table(body.get("table_name"))
            return {
                "table_name": info.name,
                "table_id": info.table_id,
                "schema": schema_to_payload(info.schema),
            }

    def _handle_GetTableLocations(self, body):
        with self._lock:
            info = self._get_table_by_id(body.get("table_id"))
            if "key" in body:
                tablets = [info.tablet_for_key(body["key"])]
            else:
                tablets = info.tablets
            return {"tablets": [t.to_location() for t in tablets]}

    def _handle_ListTables(self, body):
        name_filter = body.get("filter")
        with self._lock:
            names = sorted(self.tables)
        if name_filter:
            names = [n for n in names if name_filter in n]
        return {"tables": names}


def _apply_alter_steps(schema, steps):
    columns = schema.columns()
    num_keys = schema.num_key_columns

    def _index(name):
        for idx, col in enumerate(columns):
            if col.name == name:
                return idx
        raise ServerError("COLUMN_NOT_FOUND", "The column %s does not exist" % name)

    def _absent(name):
        if any(col.name == name for col in columns):
            raise ServerError("ALREADY_PRESENT", "The column %s already exists" % name)

    for step in steps:
        step_type = step.get("type")
        if step_type == "RENAME_COLUMN":
            idx = _index(step["old_name"])
            _absent(step["new_name"])
            old = columns[idx]
            columns[idx] = ColumnSchema(step["new_name"], old.type, old.is_nullable, old.default)
        elif step_type == "ADD_COLUMN":
            col = column_from_payload(step["column"])
            _absent(col.name)
            if col.is_required:
                raise ServerError("INVALID_ARGUMENT",
                                  "A non-null column must have a default: %s" % col.name)
            columns.append(col)
        elif step_type == "DROP_COLUMN":
            idx = _index(step["name"])
            if idx < num_keys:
                raise ServerError("INVALID_ARGUMENT",
                                  "Cannot drop key column %s" % step["name"])
            del columns[idx]
        else:
            raise ServerError("INVALID_ARGUMENT", "Unknown alter step %r" % step_type)
    return Schema(columns, num_keys)


class MiniTablet(object):

    def __init__(self, tablet_id, schema, start_key, end_key):
        self.tablet_id = tablet_id
        self.schema = schema
        self.start_key = start_key
        self.end_key = end_key
        # Sorted encoded keys, and encoded key -> full row.
        self.keys = []
        self.rows = {}
        self.lock = Lock()

    def contains(self, key):
        return self.start_key <= key and (self.end_key == b'' or key < self.end_key)

    def encode(self, row):
        return encode_key(self.schema, [row[col.name] for col in self.schema.key_columns()])

    def apply(self, op_type, values):
        # Validation goes through PartialRow so the server agrees with the
        # client about what a well formed row is.
        partial = PartialRow(self.schema)
        for name, value in values.items():
            partial.set(name, value)
        if not partial.is_key_set():
            raise ServerError("INVALID_ARGUMENT", "Key columns not set")
        key = partial.encoded_key()
        if not self.contains(key):
            raise ServerError("TABLET_NOT_RUNNING",
                              "Key %r does not belong to tablet %s" % (key, self.tablet_id))
        with self.lock:
            if op_type == "INSERT":
                missing = partial.missing_required_columns()
                if missing:
                    raise ServerError("INVALID_ARGUMENT",
                                      "Missing required columns: %s" % ", ".join(missing))
                if key in self.rows:
                    raise ServerError("ALREADY_PRESENT", "key already present")
                row = dict((col.name, col.default) for col in self.schema)
                row.update(values)
                insort(self.keys, key)
                self.rows[key] = row
            elif op_type == "UPDATE":
                if key not in self.rows:
                    raise ServerError("NOT_FOUND", "key not found")
                self.rows[key].update(values)
            elif op_type == "DELETE":
                if key not in self.rows:
                    raise ServerError("NOT_FOUND", "key not found")
                del self.rows[key]
                del self.keys[bisect_left(self.keys, key)]
            else:
                raise ServerError("INVALID_ARGUMENT", "Unknown operation %r" % op_type)

    def alter(self, new_schema, steps):
        with self.lock:
            for row in self.rows.values():
                for step in steps:
                    if step["type"] == "RENAME_COLUMN":
                        row[step["new_name"]] = row.pop(step["old_name"])
                    elif step["type"] == "ADD_COLUMN":
                        row[step["column"]["name"]] = step["column"].get("default")
                    elif step["type"] == "DROP_COLUMN":
                        row.pop(step["name"], None)
            self.schema = new_schema

    def matching_rows(self, predicates, projection):
        with self.lock:
            rows = [self.rows[key] for key in self.keys]
        return [dict((name, row.get(name)) for name in projection)
                for row in rows
                if all(pred.matches(row.get(pred.column.name)) for pred in predicates)]


class _ScannerState(object):

    def __init__(self, rows):
        self.rows = rows
        self.pos = 0

    def next_batch(self, batch_size):
        batch = self.rows[self.pos:self.pos + batch_size]
        self.pos += len(batch)
        return batch

    @property
    def done(self):
        return self.pos >= len(self.rows)


@implementer(IService)
class MiniTabletServer(_MiniServer):

    def __init__(self, host, port, transport):
        super(MiniTabletServer, self).__init__(host, port, transport)
        self.tablets = {}
        self.scanners = {}
        self._lock = Lock()

    def create_tablet(self, tablet_id, schema, start_key, end_key):
        with self._lock:
            self.tablets[tablet_id] = MiniTablet(tablet_id, schema, start_key, end_key)

    def alter_tablet(self, tablet_id, new_schema, steps):
        self._get_tablet(tablet_id).alter(new_schema, steps)

    def delete_tablet(self, tablet_id):
        with self._lock:
            self.tablets.pop(tablet_id, None)

    def _get_tablet(self, tablet_id):
        with self._lock:
            try:
                return self.tablets[tablet_id]
            except KeyError:
                raise ServerError("TABLET_NOT_FOUND", "Tablet %s not found" % tablet_id)

    def _handle_Write(self, body):
        tablet = self._get_tablet(body.get("tablet_id"))
        per_row_errors = []
        for idx, op in enumerate(body.get("ops", [])):
            try:
                tablet.apply(op["type"], op["row"])
            except ServerError as e:
                per_row_errors.append({"row_index": idx, "error": e.to_error()})
            except KuduException as e:
                per_row_errors.append({"row_index": idx, "error": _error_from_exception(e)})
        return {"per_row_errors": per_row_errors}

    def _handle_Scan(self, body):
        batch_size = body.get("batch_size", 128)
        scanner_id = body.get("scanner_id")
        if scanner_id is None:
            tablet = self._get_tablet(body.get("tablet_id"))
            predicates = [_from_predicate(p, tablet.schema) for p in body.get("predicates", [])]
            projection = body.get("projection") or tablet.schema.column_names()
            for name in projection:
                tablet.schema.column_by_name(name)
            state = _ScannerState(tablet.matching_rows(predicates, projection))
            scanner_id = uuid.uuid4().hex
            with self._lock:
                self.scanners[scanner_id] = state
        else:
            with self._lock:
                state = self.scanners.get(scanner_id)
            if state is None:
                raise ServerError("NOT_FOUND", "Scanner %s not found" % scanner_id)
        if body.get("close_scanner"):
            rows = []
        else:
            rows = state.next_batch(batch_size)
        has_more = not body.get("close_scanner") and not state.done
        if not has_more:
            with self._lock:
                self.scanners.pop(scanner_id, None)
        return {"scanner_id": scanner_id, "rows": rows, "has_more_results": has_more}


class MiniCluster(object):

    def __init__(self, master_addr="127.0.0.1", num_tablet_servers=3, transport=None):
        self.transport = transport or default_transport
        host, port = parse_endpoint(master_addr)
        self.master_addr = "%s:%s" % (host, port)
        # Tablet servers sit on the ports right after the master's.
        self.tablet_servers = [MiniTabletServer(host, port + 1 + i, self.transport)
                               for i in range(num_tablet_servers)]
        self.master = MiniMaster(host, port, self.transport, self.tablet_servers)

    def start(self):
        for tserver in self.tablet_servers:
            tserver.start()
        self.master.start()
        return self

    def shutdown(self):
        self.master.shutdown()
        for tserver in self.tablet_servers:
            if tserver.running:
                tserver.shutdown()

    def __enter__(self):
        return self.start()

    def __exit__(self, exc_type, exc_value, traceback):
        self.shutdown()
