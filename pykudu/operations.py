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
from .exceptions import InvalidArgumentException
from .row import PartialRow


# A row mutation waiting to be applied to a session. Fill in the row, then
# hand it to Session.apply().
class WriteOperation(object):
    op_type = None

    def __init__(self, table):
        self.table = table
        self.row = PartialRow(table.schema())

    def mutable_row(self):
        return self.row

    # Raises InvalidArgumentException if the row can't possibly be applied.
    # Only looks at the row itself, the server has the final say.
    def check(self):
        if not self.row.is_key_set():
            raise InvalidArgumentException(
                "%s is missing key columns: %s" % (self.op_type, self.row))

    def encoded_key(self):
        return self.row.encoded_key()

    def __repr__(self):
        return "%s %s" % (self.op_type, self.row)


class Insert(WriteOperation):
    op_type = "INSERT"

    def check(self):
        super(Insert, self).check()
        missing = self.row.missing_required_columns()
        if missing:
            raise InvalidArgumentException(
                "INSERT is missing required columns %s: %s" % (", ".join(missing), self.row))


class Update(WriteOperation):
    op_type = "UPDATE"


class Delete(WriteOperation):
    op_type = "DELETE"

    def check(self):
        super(Delete, self).check()
        extra = [col.name for col in self.table.schema()
                 if self.row.is_set(col.name) and not self.table.schema().is_key_column(col.name)]
        if extra:
            raise InvalidArgumentException(
                "DELETE may only set key columns, got %s: %s" % (", ".join(extra), self.row))
