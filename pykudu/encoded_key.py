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
from .exceptions import IllegalStateException, InvalidArgumentException
from .schema import STRING

# Encoded keys compare bytewise in the same order as the key values they
# were built from. That's what lets split points and tablet boundaries be
# opaque byte strings.
#
#   - Unsigned integers: big-endian, fixed width.
#   - Signed integers: big-endian, fixed width, sign bit flipped (so that
#     negative values sort before positive ones).
#   - Strings: UTF-8. A string that isn't the last key component has every
#     '\x00' escaped as '\x00\x01' and is terminated with '\x00\x00'.


def encode_key_component(col_type, value, is_last):
    col_type.validate(value)
    if col_type.is_integer:
        if col_type.signed:
            value ^= 1 << (col_type.size * 8 - 1)
            value &= (1 << (col_type.size * 8)) - 1
        return value.to_bytes(col_type.size, "big")
    if col_type is STRING:
        raw = value.encode("utf8")
        if is_last:
            return raw
        return raw.replace(b"\x00", b"\x00\x01") + b"\x00\x00"
    raise InvalidArgumentException("Type %s cannot be part of a key" % col_type)


class EncodedKey(object):

    def __init__(self, encoded):
        self._encoded = encoded

    def to_string(self):
        return self._encoded

    def __eq__(self, other):
        return isinstance(other, EncodedKey) and self._encoded == other._encoded

    def __ne__(self, other):
        return not self == other

    def __lt__(self, other):
        return self._encoded < other._encoded

    def __hash__(self):
        return hash(self._encoded)

    def __repr__(self):
        return "EncodedKey(%r)" % self._encoded


# Builds an EncodedKey one key column at a time, in schema order.
#
#   builder = EncodedKeyBuilder(schema)
#   builder.add_column_key(100)
#   split = builder.build_encoded_key().to_string()
class EncodedKeyBuilder(object):

    def __init__(self, schema):
        self.schema = schema
        self._components = []

    def reset(self):
        self._components = []

    def add_column_key(self, value):
        idx = len(self._components)
        if idx >= self.schema.num_key_columns:
            raise IllegalStateException(
                "Schema has only %d key columns" % self.schema.num_key_columns)
        col = self.schema.column(idx)
        is_last = idx == self.schema.num_key_columns - 1
        self._components.append(encode_key_component(col.type, value, is_last))

    def build_encoded_key(self):
        if len(self._components) != self.schema.num_key_columns:
            raise IllegalStateException(
                "Expected %d key components, got %d" %
                (self.schema.num_key_columns, len(self._components)))
        return EncodedKey(b"".join(self._components))


def encode_key(schema, values):
    builder = EncodedKeyBuilder(schema)
    for value in values:
        builder.add_column_key(value)
    return builder.build_encoded_key().to_string()
