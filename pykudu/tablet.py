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
from .exceptions import MasterMalformedResponseException
from .transport import parse_endpoint


# A tablet serves the encoded keys in [start_key, end_key). An empty
# end_key means the tablet is unbounded above, an empty start_key that it's
# unbounded below.
class Tablet(object):

    def __init__(self, table, tablet_id, start, end, server_addr=None):
        self.table = table
        self.tablet_id = tablet_id
        self.start_key = start
        self.end_key = end
        self.server_addr = server_addr
        self.server_client = None

    def __repr__(self):
        return str({
            "table": self.table,
            "tablet_id": self.tablet_id,
            "start_key": self.start_key,
            "end_key": self.end_key,
            "server_addr": self.server_addr,
        })


def tablet_from_location(location):
    try:
        table = location["table"]
        tablet_id = location["tablet_id"]
        start_key = location["start_key"]
        end_key = location["end_key"]
        host, port = parse_endpoint(location["server"])
    except (KeyError, TypeError, ValueError):
        raise MasterMalformedResponseException(
            message="Master returned an invalid tablet location: %r" % (location,))
    if not isinstance(start_key, bytes) or not isinstance(end_key, bytes) or \
            (end_key != b"" and end_key <= start_key):
        raise MasterMalformedResponseException(
            message="Master returned invalid tablet boundaries: %r" % (location,))
    return Tablet(table, tablet_id, start_key, end_key, server_addr="%s:%s" % (host, port))
