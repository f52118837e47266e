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
from .exceptions import InvalidArgumentException, NoSuchColumnException


class DataType(object):

    def __init__(self, name, size=None, signed=False):
        self.name = name
        # Width in bytes for the integer types, None otherwise.
        self.size = size
        self.signed = signed

    @property
    def is_integer(self):
        return self.size is not None

    @property
    def min_value(self):
        if self.signed:
            return -(1 << (self.size * 8 - 1))
        return 0

    @property
    def max_value(self):
        if self.signed:
            return (1 << (self.size * 8 - 1)) - 1
        return (1 << (self.size * 8)) - 1

    def validate(self, value):
        # Raises InvalidArgumentException if value can't be stored in a
        # column of this type. Returns the value untouched otherwise.
        if self.is_integer:
            # bool is an int subclass, but True is not a valid uint32.
            if isinstance(value, bool) or not isinstance(value, int):
                raise InvalidArgumentException(
                    "Expected an integer for type %s, got %r" % (self.name, value))
            if not self.min_value <= value <= self.max_value:
                raise InvalidArgumentException(
                    "Value %d out of range for type %s" % (value, self.name))
        elif self is STRING:
            if not isinstance(value, str):
                raise InvalidArgumentException("Expected a str for type STRING, got %r" % value)
        elif self is BOOL:
            if not isinstance(value, bool):
                raise InvalidArgumentException("Expected a bool for type BOOL, got %r" % value)
        return value

    def __repr__(self):
        return self.name


UINT8 = DataType("UINT8", 1)
INT8 = DataType("INT8", 1, signed=True)
UINT16 = DataType("UINT16", 2)
INT16 = DataType("INT16", 2, signed=True)
UINT32 = DataType("UINT32", 4)
INT32 = DataType("INT32", 4, signed=True)
UINT64 = DataType("UINT64", 8)
INT64 = DataType("INT64", 8, signed=True)
STRING = DataType("STRING")
BOOL = DataType("BOOL")

TYPES = dict((t.name, t) for t in (UINT8, INT8, UINT16, INT16, UINT32, INT32,
                                    UINT64, INT64, STRING, BOOL))


def type_from_name(name):
    try:
        return TYPES[name]
    except KeyError:
        raise InvalidArgumentException("Unknown column type %r" % name)


class ColumnSchema(object):

    def __init__(self, name, type, is_nullable=False, default=None):  # noqa: A002
        if not name:
            raise InvalidArgumentException("Column name must not be empty")
        self.name = name
        self.type = type
        self.is_nullable = is_nullable
        # None means "no default". A nullable column without a default
        # simply reads back as null.
        self.default = type.validate(default) if default is not None else None

    @property
    def has_default(self):
        return self.default is not None

    @property
    def is_required(self):
        # Must be set explicitly by every insert.
        return not self.is_nullable and not self.has_default

    def __eq__(self, other):
        return isinstance(other, ColumnSchema) and \
            (self.name, self.type, self.is_nullable, self.default) == \
            (other.name, other.type, other.is_nullable, other.default)

    def __ne__(self, other):
        return not self == other

    def __repr__(self):
        return str({
            "name": self.name,
            "type": self.type,
            "is_nullable": self.is_nullable,
            "default": self.default
        })


# An ordered list of columns, the first num_key_columns of which form the
# primary key.
class Schema(object):

    def __init__(self, columns, num_key_columns):
        columns = list(columns)
        if len(columns) == 0:
            raise InvalidArgumentException("Schema must have at least one column")
        if not 1 <= num_key_columns <= len(columns):
            raise InvalidArgumentException(
                "Bad number of key columns: %d (schema has %d columns)" %
                (num_key_columns, len(columns)))
        self._name_to_index = {}
        for idx, col in enumerate(columns):
            if col.name in self._name_to_index:
                raise InvalidArgumentException("Duplicate column name: %s" % col.name)
            self._name_to_index[col.name] = idx
            if idx < num_key_columns:
                if col.is_nullable:
                    raise InvalidArgumentException(
                        "Key column %s may not be nullable" % col.name)
                if col.type is BOOL:
                    raise InvalidArgumentException(
                        "Key column %s may not be of type BOOL" % col.name)
        self._columns = columns
        self.num_key_columns = num_key_columns

    def column(self, idx):
        return self._columns[idx]

    def column_by_name(self, name):
        idx = self.find_column(name)
        if idx == -1:
            raise NoSuchColumnException("No such column: %s" % name)
        return self._columns[idx]

    # Returns the index of the column or -1.
    def find_column(self, name):
        return self._name_to_index.get(name, -1)

    def num_columns(self):
        return len(self._columns)

    def columns(self):
        return list(self._columns)

    def column_names(self):
        return [col.name for col in self._columns]

    def key_columns(self):
        return self._columns[:self.num_key_columns]

    def is_key_column(self, name):
        return -1 < self.find_column(name) < self.num_key_columns

    def __iter__(self):
        return iter(self._columns)

    def __len__(self):
        return len(self._columns)

    def __eq__(self, other):
        return isinstance(other, Schema) and \
            self.num_key_columns == other.num_key_columns and \
            self._columns == other._columns

    def __ne__(self, other):
        return not self == other

    def __repr__(self):
        return "Schema(%s, num_key_columns=%d)" % (self._columns, self.num_key_columns)


def column_to_payload(col):
    return {
        "name": col.name,
        "type": col.type.name,
        "is_nullable": col.is_nullable,
        "default": col.default,
    }


def column_from_payload(payload):
    return ColumnSchema(payload["name"], type_from_name(payload["type"]),
                        is_nullable=payload.get("is_nullable", False),
                        default=payload.get("default"))


def schema_to_payload(schema):
    return {
        "columns": [column_to_payload(col) for col in schema],
        "num_key_columns": schema.num_key_columns,
    }


def schema_from_payload(payload):
    try:
        return Schema([column_from_payload(c) for c in payload["columns"]],
                      payload["num_key_columns"])
    except (KeyError, TypeError):
        raise InvalidArgumentException("Malformed schema: %r" % (payload,))
