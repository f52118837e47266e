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
from ..predicates import _to_predicate
from ..schema import column_to_payload, schema_to_payload

# Rows a tablet server hands back per Scan call.
DEFAULT_SCAN_BATCH_SIZE = 128


class Request(object):

    def __init__(self, type, payload):  # noqa: B002
        self.type = type
        self.payload = payload

    def __repr__(self):
        return "Request(%s)" % self.type


def ping_request():
    return Request("Ping", {})


def create_table_request(table_name, schema, split_keys, num_replicas):
    return Request("CreateTable", {
        "table_name": table_name,
        "schema": schema_to_payload(schema),
        "split_keys": list(split_keys),
        "num_replicas": num_replicas,
    })


# steps is a list of (step_type, args) tuples as collected by the
# TableAlterer. They're applied by the master in order.
def alter_table_request(table_name, steps, new_table_name=None):
    rq_steps = []
    for step_type, args in steps:
        if step_type == "ADD_COLUMN":
            rq_steps.append({"type": step_type, "column": column_to_payload(args)})
        elif step_type == "DROP_COLUMN":
            rq_steps.append({"type": step_type, "name": args})
        elif step_type == "RENAME_COLUMN":
            rq_steps.append({"type": step_type, "old_name": args[0], "new_name": args[1]})
        else:
            raise ValueError("Unknown alter step %r" % step_type)
    return Request("AlterTable", {
        "table_name": table_name,
        "new_table_name": new_table_name,
        "steps": rq_steps,
    })


def delete_table_request(table_name):
    return Request("DeleteTable", {"table_name": table_name})


def get_table_schema_request(table_name):
    return Request("GetTableSchema", {"table_name": table_name})


# With a key, asks for the tablet hosting that key. Without one, asks for
# every tablet of the table.
def get_table_locations_request(table_id, key=None):
    payload = {"table_id": table_id}
    if key is not None:
        payload["key"] = key
    return Request("GetTableLocations", payload)


def list_tables_request(name_filter=None):
    return Request("ListTables", {"filter": name_filter})


# ops is a list of (op_type, row_payload) tuples all destined for the same
# tablet.
def write_request(tablet, ops, timeout_millis):
    return Request("Write", {
        "tablet_id": tablet.tablet_id,
        "timeout_millis": timeout_millis,
        "ops": [{"type": op_type, "row": row} for op_type, row in ops],
    })


def scan_request(tablet, predicates, projection, batch_size, close, scanner_id):
    rq = {"tablet_id": tablet.tablet_id, "batch_size": batch_size}
    if close:
        rq["close_scanner"] = True
    if scanner_id is not None:
        rq["scanner_id"] = scanner_id
        return Request("Scan", rq)
    rq["predicates"] = [_to_predicate(pred) for pred in predicates]
    rq["projection"] = list(projection)
    return Request("Scan", rq)
