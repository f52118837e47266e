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
from .encoded_key import EncodedKeyBuilder
from .exceptions import IllegalStateException, InvalidArgumentException, NoSuchColumnException
from .schema import BOOL, INT8, INT16, INT32, INT64, STRING, UINT8, UINT16, UINT32, UINT64


def _typed_setter(data_type):
    def setter(self, name, value):
        col = self.schema.column_by_name(name)
        if col.type is not data_type:
            raise InvalidArgumentException(
                "Column %s is of type %s, not %s" % (name, col.type, data_type))
        self.set(name, value)
    setter.__name__ = "set_" + data_type.name.lower()
    return setter


def _typed_getter(data_type):
    def getter(self, name):
        col = self._column(name)
        if col.type is not data_type:
            raise InvalidArgumentException(
                "Column %s is of type %s, not %s" % (name, col.type, data_type))
        return self.get(name)
    getter.__name__ = "get_" + data_type.name.lower()
    return getter


# A row under construction. Only the columns that were explicitly set are
# sent to the server; the server fills in defaults and nulls for the rest.
class PartialRow(object):

    def __init__(self, schema):
        self.schema = schema
        self._values = {}

    def set(self, name, value):
        col = self.schema.column_by_name(name)
        if value is None:
            return self.set_null(name)
        self._values[name] = col.type.validate(value)

    def set_null(self, name):
        col = self.schema.column_by_name(name)
        if not col.is_nullable:
            raise InvalidArgumentException("Column %s is not nullable" % name)
        self._values[name] = None

    def unset(self, name):
        self.schema.column_by_name(name)
        self._values.pop(name, None)

    def is_set(self, name):
        self.schema.column_by_name(name)
        return name in self._values

    def is_null(self, name):
        return self.is_set(name) and self._values[name] is None

    def get(self, name):
        self.schema.column_by_name(name)
        try:
            return self._values[name]
        except KeyError:
            raise IllegalStateException("Column %s is not set" % name)

    def is_key_set(self):
        return all(col.name in self._values for col in self.schema.key_columns())

    def all_required_set(self):
        return all(col.name in self._values for col in self.schema if col.is_required)

    def missing_required_columns(self):
        return [col.name for col in self.schema
                if col.is_required and col.name not in self._values]

    def encoded_key(self):
        if not self.is_key_set():
            raise IllegalStateException("Key not set: %s" % self)
        builder = EncodedKeyBuilder(self.schema)
        for col in self.schema.key_columns():
            builder.add_column_key(self._values[col.name])
        return builder.build_encoded_key().to_string()

    def to_payload(self):
        return dict(self._values)

    def __repr__(self):
        return "PartialRow(%s)" % ", ".join(
            "%s=%r" % (col.name, self._values[col.name])
            for col in self.schema if col.name in self._values)

    set_uint8 = _typed_setter(UINT8)
    set_int8 = _typed_setter(INT8)
    set_uint16 = _typed_setter(UINT16)
    set_int16 = _typed_setter(INT16)
    set_uint32 = _typed_setter(UINT32)
    set_int32 = _typed_setter(INT32)
    set_uint64 = _typed_setter(UINT64)
    set_int64 = _typed_setter(INT64)
    set_string = _typed_setter(STRING)
    set_bool = _typed_setter(BOOL)


# A single row handed back by a scanner. Only the projected columns can be
# read.
class RowResult(object):

    def __init__(self, columns, values):
        # columns is the projection the scan was opened with.
        self.columns = columns
        self._by_name = dict((col.name, col) for col in columns)
        self._values = values

    def _column(self, name):
        try:
            return self._by_name[name]
        except KeyError:
            raise NoSuchColumnException("Column %s is not part of the projection" % name)

    def get(self, name):
        self._column(name)
        return self._values.get(name)

    def is_null(self, name):
        return self.get(name) is None

    def to_dict(self):
        return dict((col.name, self._values.get(col.name)) for col in self.columns)

    def __eq__(self, other):
        return isinstance(other, RowResult) and self.to_dict() == other.to_dict()

    def __ne__(self, other):
        return not self == other

    def __repr__(self):
        return "RowResult(%s)" % self.to_dict()

    get_uint8 = _typed_getter(UINT8)
    get_int8 = _typed_getter(INT8)
    get_uint16 = _typed_getter(UINT16)
    get_int16 = _typed_getter(INT16)
    get_uint32 = _typed_getter(UINT32)
    get_int32 = _typed_getter(INT32)
    get_uint64 = _typed_getter(UINT64)
    get_int64 = _typed_getter(INT64)
    get_string = _typed_getter(STRING)
    get_bool = _typed_getter(BOOL)
