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
from time import sleep, time

from ..exceptions import KuduException, MasterServerException
from ..request import request
from ..rpc import client as rpc
from ..transport import parse_endpoint

logger = logging.getLogger(__name__)


def _ping(host, port, transport):
    # Returns a connected rpc client if host:port is the leader master, None
    # otherwise.
    c = rpc.NewClient(host, port, transport)
    if c is None:
        logger.debug("Master %s:%s refused the connection", host, port)
        return None
    try:
        rsp = c._send_request(request.ping_request())
    except KuduException as e:
        logger.debug("Master %s:%s failed to answer a ping: %s", host, port, e)
        c.close()
        return None
    if not rsp.get("is_leader", False):
        c.close()
        return None
    return c


# Walks the configured masters until one of them says it's the leader.
# Keeps trying for `timeout` seconds, then gives up.
def locate_master(master_addrs, transport, timeout=5, retry_interval=0.25):
    endpoints = [parse_endpoint(addr) for addr in master_addrs]
    if len(endpoints) == 0:
        raise MasterServerException(message="No master addresses given")
    deadline = time() + timeout
    while True:
        for host, port in endpoints:
            c = _ping(host, port, transport)
            if c is not None:
                logger.info('Discovered leader Master at %s:%s', host, port)
                return c
        if time() + retry_interval > deadline:
            break
        logger.warning("No leader master among %s. Retrying in %.2f seconds.",
                       ",".join(master_addrs), retry_interval)
        sleep(retry_interval)
    host, port = endpoints[0]
    raise MasterServerException(
        host, port, message="Unable to locate a leader master among %s within %.1f seconds" %
        (",".join(master_addrs), timeout))
