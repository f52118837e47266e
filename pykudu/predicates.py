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
from .schema import ColumnSchema


# Keeps rows whose value in `column` falls within [lower, upper]. Both
# bounds are inclusive, and either may be None to leave that side open.
# Nulls never match.
#
# Scanners AND together every predicate they're given, so ranges on
# several columns can be combined:
#
#   scanner.add_conjunct_predicate(ColumnRangePredicate(key_col, 5, 600))
#   scanner.add_conjunct_predicate(ColumnRangePredicate(val_col, None, 10))
class ColumnRangePredicate(object):

    def __init__(self, column, lower, upper):
        self.column = column
        self.lower = column.type.validate(lower) if lower is not None else None
        self.upper = column.type.validate(upper) if upper is not None else None

    def matches(self, value):
        if value is None:
            return False
        if self.lower is not None and value < self.lower:
            return False
        if self.upper is not None and value > self.upper:
            return False
        return True

    def __repr__(self):
        return "ColumnRangePredicate(%s, %r, %r)" % (self.column.name, self.lower, self.upper)


# Converts a user supplied predicate into its request form. We're strict
# about what we accept; a predicate on anything but a ColumnSchema can't be
# evaluated by the tablet servers.
def _to_predicate(pred):
    if not isinstance(pred, ColumnRangePredicate) or \
            not isinstance(pred.column, ColumnSchema):
        raise ValueError("Malformed predicate provided: %r" % (pred,))
    return {
        "column": pred.column.name,
        "lower": pred.lower,
        "upper": pred.upper,
    }


def _from_predicate(payload, schema):
    return ColumnRangePredicate(schema.column_by_name(payload["column"]),
                                payload.get("lower"), payload.get("upper"))
