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

from .exceptions import InvalidArgumentException
from .operations import Delete, Insert, Update
from .request import request
from .scanner import Scanner
from .schema import ColumnSchema

logger = logging.getLogger(__name__)


# A handle on an open table. The schema is the one the table had when it
# was opened; reopen the table to see later alterations.
class Table(object):

    def __init__(self, client, name, table_id, schema):
        self._client = client
        self.name = name
        self.table_id = table_id
        self._schema = schema

    def client(self):
        return self._client

    def schema(self):
        return self._schema

    def new_insert(self):
        return Insert(self)

    def new_update(self):
        return Update(self)

    def new_delete(self):
        return Delete(self)

    def new_scanner(self):
        return Scanner(self)

    def __repr__(self):
        return "Table(%s, id=%s)" % (self.name, self.table_id)


class TableCreator(object):

    def __init__(self, client):
        self._client = client
        self._table_name = None
        self._schema = None
        self._split_keys = []
        self._num_replicas = 1

    def table_name(self, name):
        self._table_name = name
        return self

    def schema(self, schema):
        self._schema = schema
        return self

    # Encoded keys (see EncodedKeyBuilder). Each one ends a tablet and starts
    # the next, so n split keys make n + 1 tablets.
    def split_keys(self, keys):
        self._split_keys = list(keys)
        return self

    def num_replicas(self, num_replicas):
        self._num_replicas = num_replicas
        return self

    def create(self):
        if not self._table_name:
            raise InvalidArgumentException("Missing table name")
        if self._schema is None:
            raise InvalidArgumentException("Missing schema")
        if self._num_replicas < 1:
            raise InvalidArgumentException("num_replicas must be >= 1")
        splits = sorted(self._split_keys)
        for prev, cur in zip(splits, splits[1:]):
            if prev == cur:
                raise InvalidArgumentException("Duplicate split key: %r" % cur)
        if b'' in splits:
            raise InvalidArgumentException("Split keys may not be empty")
        self._client._call_master(request.create_table_request(
            self._table_name, self._schema, splits, self._num_replicas))
        logger.info("Created table %s with %d tablets", self._table_name, len(splits) + 1)


# Collects schema changes and submits them as a single request. The master
# applies the steps in the order they were added; if any of them fails
# nothing changes.
class TableAlterer(object):

    def __init__(self, client):
        self._client = client
        self._table_name = None
        self._new_table_name = None
        self._steps = []

    def table_name(self, name):
        self._table_name = name
        return self

    def rename_table(self, new_name):
        self._new_table_name = new_name
        return self

    def add_column(self, name, type, default):  # noqa: A002
        if default is None:
            raise InvalidArgumentException(
                "A non-null column must have a default: %s" % name)
        self._steps.append(("ADD_COLUMN", ColumnSchema(name, type, default=default)))
        return self

    def add_nullable_column(self, name, type):  # noqa: A002
        self._steps.append(("ADD_COLUMN", ColumnSchema(name, type, is_nullable=True)))
        return self

    def drop_column(self, name):
        self._steps.append(("DROP_COLUMN", name))
        return self

    def rename_column(self, old_name, new_name):
        self._steps.append(("RENAME_COLUMN", (old_name, new_name)))
        return self

    def alter(self):
        if not self._table_name:
            raise InvalidArgumentException("Missing table name")
        if len(self._steps) == 0 and self._new_table_name is None:
            raise InvalidArgumentException("No alter steps provided")
        self._client._call_master(request.alter_table_request(
            self._table_name, self._steps, self._new_table_name))
        logger.info("Altered table %s (%d steps)", self._table_name, len(self._steps))
