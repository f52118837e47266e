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
from collections import defaultdict
from threading import Lock, Semaphore
from time import sleep, time

logger = logging.getLogger(__name__)


# All pykudu exceptions inherit from me. Assumes unrecoverable.
class KuduException(Exception):

    # If any subclass hasn't redefined _handle they'll
    # use this function. Assumes the exception is
    # unrecoverable and thus the _handle method
    # just reraises the exception.
    def _handle_exception(self, main_client, **kwargs):
        raise self


# Something the user asked for isn't there.
class NotFoundException(KuduException):
    pass


# The user is looking up a table that doesn't
# exist. They're silly.
class NoSuchTableException(NotFoundException):
    pass


# The user is looking up a column that doesn't exist,
# also silly.
class NoSuchColumnException(NotFoundException):
    pass


# Table name taken, or a row with this key was already inserted.
class AlreadyPresentException(KuduException):
    pass


# They gave us a malformed schema, row, key or request.
class InvalidArgumentException(KuduException):
    pass


# The object isn't in a state where the call makes sense (e.g. changing the
# flush mode of a session with buffered writes).
class IllegalStateException(KuduException):
    pass


class TimedOutException(KuduException):
    pass


class IOErrorException(KuduException):
    pass


# Means a tablet server is dead or unreachable.
class TabletServerException(KuduException):

    def __init__(self, host=None, port=None, server_client=None):
        super(TabletServerException, self).__init__(
            "Tablet server %s:%s unreachable" % (host, port) if host is not None
            else "Tablet server unreachable")
        self.host = host
        self.port = port
        self.server_client = server_client

    def _handle_exception(self, main_client, **kwargs):
        # server_client not set? Then host/port must have been. Fetch the
        # client given the host, port
        if self.server_client is None:
            loc = "%s:%s" % (self.host, self.port)
            self.server_client = main_client.reverse_client_cache.get(loc, None)
        else:
            loc = self.server_client.location
        # Let one thread through per server (returns True otherwise blocks
        # and eventually returns False)
        if _let_one_through(self, loc):
            try:
                # We need to make sure that a different thread hasn't already
                # purged this server.
                if loc in main_client.reverse_client_cache:
                    logger.warning("Tablet server %s refusing connections. Purging cache, "
                                   "sleeping, retrying.", loc)
                    main_client._purge_client(self.server_client)
                # Sleep for an arbitrary amount of time. If this returns
                # False then we've hit our max retry threshold. Die.
                if not _dynamic_sleep(self, loc, kwargs.get("deadline")):
                    raise self
            finally:
                # Notify all the other threads to wake up because we've handled the
                # exception for everyone!
                _let_all_through(self, loc)


# All Master exceptions inherit from me
class MasterServerException(KuduException):

    def __init__(self, host=None, port=None, message=None):
        super(MasterServerException, self).__init__(
            message or "Unable to reach a leader master at %s:%s" % (host, port))
        self.host = host
        self.port = port

    def _handle_exception(self, main_client, **kwargs):
        # Let one thread through. Others block and eventually return False.
        if _let_one_through(self, None):
            try:
                # Makes sure someone else hasn't already fixed the issue.
                if main_client.master_client is None or \
                        (self.host == main_client.master_client.host and
                         self.port == main_client.master_client.port):
                    logger.warning("Encountered an exception with the Master server. "
                                   "Sleeping then reestablishing.")
                    if not _dynamic_sleep(self, None, kwargs.get("deadline")):
                        raise self
                    main_client._recreate_master_client()
            finally:
                _let_all_through(self, None)


# Master gave us funky data. Unrecoverable.
class MasterMalformedResponseException(MasterServerException):

    def _handle_exception(self, main_client, **kwargs):
        raise self


# All tablet exceptions inherit from me.
class TabletException(KuduException):

    def _handle_exception(self, main_client, **kwargs):
        if kwargs.get("dest_tablet") is not None:
            tablet_id = kwargs["dest_tablet"].tablet_id
            if _let_one_through(self, tablet_id):
                try:
                    main_client._purge_tablet(kwargs["dest_tablet"])
                    if not _dynamic_sleep(self, tablet_id, kwargs.get("deadline")):
                        raise self
                finally:
                    _let_all_through(self, tablet_id)
        else:
            raise self


# Tablet is unavailable for whatever reason.
class NotServingTabletException(TabletException):
    pass


# The tablet server doesn't host the tablet we asked for (the table was
# dropped or recreated underneath us).
class TabletNotFoundException(TabletException):
    pass


# Remote errors come back as {"code": ..., "message": ...}. This maps the
# code onto the exception we raise locally.
error_codes = {
    "NOT_FOUND": NotFoundException,
    "TABLE_NOT_FOUND": NoSuchTableException,
    "COLUMN_NOT_FOUND": NoSuchColumnException,
    "ALREADY_PRESENT": AlreadyPresentException,
    "INVALID_ARGUMENT": InvalidArgumentException,
    "ILLEGAL_STATE": IllegalStateException,
    "TIMED_OUT": TimedOutException,
    "IO_ERROR": IOErrorException,
    "TABLET_NOT_RUNNING": NotServingTabletException,
    "TABLET_NOT_FOUND": TabletNotFoundException,
}


def exception_from_error(error):
    code = error.get("code", "")
    message = error.get("message", "")
    exception_class = error_codes.get(code)
    if exception_class is None:
        return KuduException("%s: %s" % (code, message))
    return exception_class(message)


# It starts getting a little intense below here. Why? Glad you asked.
# Reason is two fold -
#
# 1. Say a background flush and the main thread both hit the same tablet
# server at the same time but that server happens to be dead. Two
# exceptions were just thrown but we only want to handle it once. How we
# go about doing that is we define two functions _let_one_through and
# _let_all_through. _let_one_through will instantly return True on the
# first thread but block for the others. Once the first thread handles
# the exception it then calls _let_all_through. After _let_all_through is
# called then _let_one_through will stop blocking and return False for
# the rest.
#
# 2. Say Master is down. We'll hit an exception, it'll handle it by
# relocating the leader master. But what if it's still down? Instead of
# infinitely looping we need a way to measure how many times similar
# exceptions have been hit 'recently' so we can have failure thresholds
# for even recoverable exceptions. We do that via the function
# _dynamic_sleep which buckets exceptions based on a few properties and
# keeps track of when similar exceptions have been thrown. We then
# exponentially increase our sleep between exceptions until eventually a
# threshold is hit which means we should give up and fail.

# Buckets are defined by a tuple (exception_class_name, affected
# client/tablet). For each bucket we hold a Semaphore which when set
# indicates that someone is already processing the exception for that
# bucket, when not set means you're the first and it's your job to
# process it.
_buckets = defaultdict(Semaphore)
# We also have an access lock on the above dictionary.
_buckets_lock = Lock()


def _let_one_through(exception, data):
    my_tuple = (exception.__class__.__name__, data)
    with _buckets_lock:
        my_sem = _buckets[my_tuple]
    # Try to non-blocking acquire my semaphore. If I get it, woohoo! Otherwise
    # get comfy because we're sitting on the semaphore.
    if my_sem.acquire(blocking=False):
        return True
    # Someone else is already handling the exception. Sit here until they
    # release the semaphore.
    my_sem.acquire()
    my_sem.release()
    return False


def _let_all_through(exception, data):
    my_tuple = (exception.__class__.__name__, data)
    with _buckets_lock:
        _buckets[my_tuple].release()


# We want to sleep more and more with every exception retry.
def sleep_formula(x):
    # [0.0, 0.44, 1.77, 4.0, 7.11, 11.11, 16.0, 21.77, 28.44, 36.0]
    return (x / 1.5)**2

_exception_count = defaultdict(lambda: (0, time()))
_max_retries = 7
_max_sleep = sleep_formula(_max_retries)


# deadline, when given, is an absolute time() no sleep may run past.
def _dynamic_sleep(exception, data, deadline=None):
    my_tuple = (exception.__class__.__name__, data)
    retries, last_retry = _exception_count[my_tuple]
    age = time() - last_retry
    if retries >= _max_retries or age > (_max_sleep * 1.2):
        # Should we fail or was the last retry a long time ago? If it's been
        # less than a max sleep since you last retried, you deserve to be
        # killed. Otherwise we'll restart the counter.
        if age < _max_sleep:
            return False
        _exception_count.pop(my_tuple)
        return _dynamic_sleep(exception, data, deadline)
    new_sleep = sleep_formula(retries)
    if deadline is not None:
        new_sleep = max(0.0, min(new_sleep, deadline - time()))
    _exception_count[my_tuple] = (retries + 1, time())
    logger.info("Sleeping for %.2f seconds.", new_sleep)
    sleep(new_sleep)
    return True
