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
# Walks through the whole life of a table: connect, create a pre-split
# table, alter it, insert a batch of rows, scan a range back out and check
# it, then drop the table.
#
#   python -m pykudu.samples.sample
#   python -m pykudu.samples.sample --mini-cluster
#
# Only the in-process transport ships, so the master has to live in this
# process. Without --mini-cluster nothing is listening and the sample exits
# with status 1 once --connect-timeout-ms runs out.
import argparse
import logging
import logging.config
import sys

from pykudu.client import ClientBuilder
from pykudu.encoded_key import EncodedKeyBuilder
from pykudu.exceptions import IOErrorException, KuduException, NoSuchTableException
from pykudu.predicates import ColumnRangePredicate
from pykudu.scanner import Scanner
from pykudu.schema import BOOL, STRING, UINT32, ColumnSchema, Schema
from pykudu.session import MANUAL_FLUSH

logger = logging.getLogger(__name__)

MASTER_ADDR = "127.0.0.1"
TABLE_NAME = "test_table"
NUM_TABLETS = 10
NUM_ROWS = 1000
SCAN_LOWER_BOUND = 5
SCAN_UPPER_BOUND = 600
INSERT_TIMEOUT_MILLIS = 5000
NON_NULL_DEFAULT = 12345
CONNECT_TIMEOUT_MILLIS = 5000

# Split points are spread evenly over keys [0, KEY_SPACE).
KEY_SPACE = 1000


def create_client(addr, timeout_millis=CONNECT_TIMEOUT_MILLIS):
    return ClientBuilder() \
        .master_server_addr(addr) \
        .default_admin_operation_timeout(timeout_millis) \
        .build()


def create_schema():
    columns = [
        ColumnSchema("key", UINT32),
        ColumnSchema("int_val", UINT32),
        ColumnSchema("string_val", STRING),
        ColumnSchema("non_null_with_default", UINT32, default=NON_NULL_DEFAULT),
    ]
    return Schema(columns, 1)


# Only "not found" means the table doesn't exist. Anything else is a real
# failure and goes up to the caller.
def does_table_exist(client, table_name):
    try:
        client.open_table(table_name)
    except NoSuchTableException:
        return False
    return True


def compute_split_keys(schema, num_tablets):
    if not 1 <= num_tablets <= KEY_SPACE:
        raise ValueError("num_tablets must be between 1 and %d, got %d" %
                         (KEY_SPACE, num_tablets))
    key_builder = EncodedKeyBuilder(schema)
    increment = KEY_SPACE // num_tablets
    splits = []
    for i in range(1, num_tablets):
        key_builder.reset()
        key_builder.add_column_key(i * increment)
        splits.append(key_builder.build_encoded_key().to_string())
    return splits


def create_table(client, table_name, schema, num_tablets):
    client.new_table_creator() \
        .table_name(table_name) \
        .schema(schema) \
        .split_keys(compute_split_keys(schema, num_tablets)) \
        .create()


def alter_table(client, table_name):
    client.new_table_alterer() \
        .table_name(table_name) \
        .rename_column("int_val", "integer_val") \
        .add_nullable_column("another_val", BOOL) \
        .drop_column("string_val") \
        .alter()


# string_val is gone by the time rows go in, and another_val is nullable, so
# neither is set.
def populate_row(row, i):
    row.set_uint32("key", i)
    row.set_uint32("integer_val", i * 2)
    row.set_uint32("non_null_with_default", i * 5)


def _status_cb(status):
    logger.info("Asynchronous flush finished with status: %s", status or "OK")


def insert_rows(table, num_rows):
    session = table.client().new_session()
    session.set_flush_mode(MANUAL_FLUSH)
    session.set_timeout_millis(INSERT_TIMEOUT_MILLIS)

    for i in range(num_rows):
        insert = table.new_insert()
        populate_row(insert.mutable_row(), i)
        session.apply(insert)
    try:
        session.flush()
        return
    except KuduException as flush_error:
        failure = flush_error

    # Test asynchronous flush.
    session.flush_async(_status_cb)

    # Look at the session's errors.
    errors, overflowed = session.get_pending_errors()
    if overflowed:
        raise IOErrorException("Overflowed pending errors in session")
    if len(errors) == 0:
        raise failure
    logger.error("%d rows failed to insert, first failure: %r", len(errors), errors[0])
    raise errors[0].status


def scan_rows(table, lower_bound=SCAN_LOWER_BOUND, upper_bound=SCAN_UPPER_BOUND):
    pred = ColumnRangePredicate(table.schema().column(0), lower_bound, upper_bound)

    scanner = Scanner(table)
    scanner.add_conjunct_predicate(pred)
    scanner.open()
    try:
        next_key = lower_bound
        while scanner.has_more_rows():
            for result in scanner.next_batch():
                val = result.get_uint32("key")
                if val != next_key:
                    raise IOErrorException(
                        "Scan returned the wrong results. Expected key %d but got %d" %
                        (next_key, val))
                next_key += 1
    finally:
        scanner.close()
    # next_key is one past the last key seen.
    if next_key != upper_bound + 1:
        raise IOErrorException(
            "Scan returned the wrong results. Expected %d rows but got %d" %
            (upper_bound, next_key))


def run(master_addr=MASTER_ADDR, table_name=TABLE_NAME, num_tablets=NUM_TABLETS,
        num_rows=NUM_ROWS, connect_timeout_millis=CONNECT_TIMEOUT_MILLIS):
    # Create and connect a client.
    client = create_client(master_addr, connect_timeout_millis)
    logger.info("Created a client connection")
    try:
        # Create a schema.
        schema = create_schema()
        logger.info("Created a schema")

        # Create a table with that schema.
        if does_table_exist(client, table_name):
            client.delete_table(table_name)
            logger.info("Deleting old table before creating new one")
        create_table(client, table_name, schema, num_tablets)
        logger.info("Created a table")

        # Alter the table.
        alter_table(client, table_name)
        logger.info("Altered a table")

        # Insert some rows into the table.
        table = client.open_table(table_name)
        insert_rows(table, num_rows)
        logger.info("Inserted some rows into a table")

        # Scan some rows.
        scan_rows(table)
        logger.info("Scanned some rows out of a table")

        # Delete the table.
        client.delete_table(table_name)
        logger.info("Deleted a table")
    finally:
        client.close()

    # Done!
    logger.info("Done")


def configure_logging(verbose=False):
    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "format": "%(asctime)s %(levelname)s %(name)s: %(message)s",
            },
        },
        "handlers": {
            "stderr": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "stream": "ext://sys.stderr",
            },
        },
        "root": {
            "level": "DEBUG" if verbose else "INFO",
            "handlers": ["stderr"],
        },
    })


def parse_args(argv):
    parser = argparse.ArgumentParser(
        description="Create, alter, fill, scan and drop a table on a cluster.")
    parser.add_argument("--master", default=MASTER_ADDR,
                        help="master address, host[:port] (default: %(default)s). The master "
                             "must run in this process, see --mini-cluster")
    parser.add_argument("--table", default=TABLE_NAME,
                        help="table to create (default: %(default)s)")
    parser.add_argument("--num-tablets", type=int, default=NUM_TABLETS,
                        help="tablets to pre-split into (default: %(default)s)")
    parser.add_argument("--num-rows", type=int, default=NUM_ROWS,
                        help="rows to insert (default: %(default)s)")
    parser.add_argument("--connect-timeout-ms", type=int, default=CONNECT_TIMEOUT_MILLIS,
                        help="how long to look for a master (default: %(default)s)")
    parser.add_argument("--mini-cluster", action="store_true",
                        help="start an in-process cluster at the master address first")
    parser.add_argument("-v", "--verbose", action="store_true", help="log at DEBUG level")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    configure_logging(args.verbose)
    cluster = None
    if args.mini_cluster:
        from pykudu.testing import MiniCluster
        cluster = MiniCluster(args.master).start()
    try:
        run(args.master, args.table, args.num_tablets, args.num_rows, args.connect_timeout_ms)
    except (KuduException, ValueError) as e:
        logger.error("Sample failed: %s: %s", e.__class__.__name__, e)
        return 1
    finally:
        if cluster is not None:
            cluster.shutdown()
    return 0


if __name__ == "__main__":
    sys.exit(main())
