import unittest
from threading import Event
from time import time
from unittest import mock

import pykudu
from pykudu.exceptions import (AlreadyPresentException, IllegalStateException,
                               InvalidArgumentException, IOErrorException, KuduException,
                               NotFoundException, TimedOutException)
from pykudu.schema import STRING, UINT32, ColumnSchema, Schema
from pykudu.session import AUTO_FLUSH_SYNC, MANUAL_FLUSH
from pykudu.testing import MiniCluster
from pykudu.transport import LocalTransport

master = "127.0.0.1:17061"
transport = LocalTransport()
cluster = MiniCluster(master, transport=transport)
table_name = "session_test"


def setUpModule():
    cluster.start()


def tearDownModule():
    cluster.shutdown()


def make_schema():
    return Schema([
        ColumnSchema("key", UINT32),
        ColumnSchema("int_val", UINT32),
        ColumnSchema("string_val", STRING, is_nullable=True),
        ColumnSchema("non_null_with_default", UINT32, default=12345),
    ], 1)


def new_insert(table, key, int_val=None):
    insert = table.new_insert()
    insert.mutable_row().set_uint32("key", key)
    insert.mutable_row().set_uint32("int_val", key * 2 if int_val is None else int_val)
    return insert


def scan_all(table):
    return dict((row.get("key"), row.to_dict()) for row in table.new_scanner())


class TestSession(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        cls.c = pykudu.ClientBuilder().master_server_addr(master).transport(transport).build()

    @classmethod
    def tearDownClass(cls):
        cls.c.close()

    def setUp(self):
        builder = pykudu.EncodedKeyBuilder(make_schema())
        splits = []
        for split in (10, 20, 30):
            builder.reset()
            builder.add_column_key(split)
            splits.append(builder.build_encoded_key().to_string())
        self.c.new_table_creator().table_name(table_name).schema(make_schema()) \
            .split_keys(splits).create()
        self.table = self.c.open_table(table_name)
        self.session = self.c.new_session()

    def tearDown(self):
        self.c.delete_table(table_name)

    def test_auto_flush_is_default(self):
        self.assertEqual(self.session.flush_mode(), AUTO_FLUSH_SYNC)
        self.session.apply(new_insert(self.table, 1))
        self.assertFalse(self.session.has_pending_operations())
        self.assertIn(1, scan_all(self.table))

    def test_manual_flush(self):
        self.session.set_flush_mode(MANUAL_FLUSH)
        for i in range(40):
            self.session.apply(new_insert(self.table, i))
        self.assertEqual(self.session.count_buffered_operations(), 40)
        self.assertEqual(scan_all(self.table), {})
        self.session.flush()
        self.assertFalse(self.session.has_pending_operations())
        rows = scan_all(self.table)
        self.assertEqual(sorted(rows), list(range(40)))
        self.assertEqual(rows[3], {"key": 3, "int_val": 6, "string_val": None,
                                   "non_null_with_default": 12345})

    def test_empty_flush(self):
        self.session.set_flush_mode(MANUAL_FLUSH)
        self.session.flush()
        self.assertEqual(self.session.count_pending_errors(), 0)
        self.assertEqual(scan_all(self.table), {})

    def test_duplicate_insert(self):
        self.session.set_flush_mode(MANUAL_FLUSH)
        self.session.apply(new_insert(self.table, 5))
        self.session.flush()
        dup = new_insert(self.table, 5, int_val=99)
        self.session.apply(dup)
        self.session.apply(new_insert(self.table, 6))
        with self.assertRaises(IOErrorException):
            self.session.flush()
        self.assertEqual(self.session.count_pending_errors(), 1)
        errors, overflowed = self.session.get_pending_errors()
        self.assertFalse(overflowed)
        self.assertEqual(len(errors), 1)
        self.assertIs(errors[0].failed_op, dup)
        self.assertIsInstance(errors[0].status, AlreadyPresentException)
        self.assertFalse(errors[0].was_possibly_successful())
        # The good row still went in, and the original wasn't overwritten.
        rows = scan_all(self.table)
        self.assertEqual(rows[5]["int_val"], 10)
        self.assertIn(6, rows)
        # Errors are handed over only once.
        self.assertEqual(self.session.get_pending_errors(), ([], False))

    def test_pending_errors_overflow(self):
        self.session.set_flush_mode(MANUAL_FLUSH)
        for i in range(10):
            self.session.apply(new_insert(self.table, i))
        self.session.flush()
        with mock.patch('pykudu.session.MAX_PENDING_ERRORS', 3):
            session = self.c.new_session()
        session.set_flush_mode(MANUAL_FLUSH)
        for i in range(10):
            session.apply(new_insert(self.table, i))
        with self.assertRaises(IOErrorException):
            session.flush()
        errors, overflowed = session.get_pending_errors()
        self.assertTrue(overflowed)
        self.assertEqual(len(errors), 3)

    def test_flush_async(self):
        self.session.set_flush_mode(MANUAL_FLUSH)
        for i in range(25):
            self.session.apply(new_insert(self.table, i))
        done = Event()
        statuses = []

        def callback(status):
            statuses.append(status)
            done.set()
        future = self.session.flush_async(callback)
        self.assertIsNone(future.result(timeout=10))
        self.assertTrue(done.wait(10))
        self.assertEqual(statuses, [None])
        self.assertEqual(len(scan_all(self.table)), 25)

    def test_flush_async_failure(self):
        self.session.set_flush_mode(MANUAL_FLUSH)
        self.session.apply(new_insert(self.table, 1))
        self.session.flush()
        self.session.apply(new_insert(self.table, 1))
        statuses = []
        future = self.session.flush_async(statuses.append)
        status = future.result(timeout=10)
        self.assertIsInstance(status, IOErrorException)
        self.assertEqual(statuses, [status])
        self.assertEqual(self.session.count_pending_errors(), 1)

    def test_apply_missing_required_column(self):
        self.session.set_flush_mode(MANUAL_FLUSH)
        insert = self.table.new_insert()
        insert.mutable_row().set_uint32("key", 1)
        with self.assertRaises(InvalidArgumentException):
            self.session.apply(insert)
        self.assertFalse(self.session.has_pending_operations())

    def test_apply_missing_key(self):
        insert = self.table.new_insert()
        insert.mutable_row().set_uint32("int_val", 1)
        with self.assertRaises(InvalidArgumentException):
            self.session.apply(insert)

    def test_set_flush_mode_with_buffered_ops(self):
        self.session.set_flush_mode(MANUAL_FLUSH)
        self.session.apply(new_insert(self.table, 1))
        with self.assertRaises(IllegalStateException):
            self.session.set_flush_mode(AUTO_FLUSH_SYNC)
        self.session.flush()
        self.session.set_flush_mode(AUTO_FLUSH_SYNC)

    def test_unknown_flush_mode(self):
        with self.assertRaises(InvalidArgumentException):
            self.session.set_flush_mode("SOMETIMES")

    def test_close(self):
        self.session.set_flush_mode(MANUAL_FLUSH)
        self.session.apply(new_insert(self.table, 1))
        with self.assertRaises(IllegalStateException):
            self.session.close()
        self.session.flush()
        self.session.close()
        with self.assertRaises(IllegalStateException):
            self.session.apply(new_insert(self.table, 2))

    def test_update_and_delete(self):
        for i in range(3):
            self.session.apply(new_insert(self.table, i))
        update = self.table.new_update()
        update.mutable_row().set_uint32("key", 1)
        update.mutable_row().set_string("string_val", "updated")
        self.session.apply(update)
        delete = self.table.new_delete()
        delete.mutable_row().set_uint32("key", 2)
        self.session.apply(delete)
        rows = scan_all(self.table)
        self.assertEqual(sorted(rows), [0, 1])
        self.assertEqual(rows[1]["string_val"], "updated")
        self.assertEqual(rows[1]["int_val"], 2)

    def test_delete_missing_row(self):
        delete = self.table.new_delete()
        delete.mutable_row().set_uint32("key", 33)
        with self.assertRaises(IOErrorException):
            self.session.apply(delete)
        errors, _ = self.session.get_pending_errors()
        self.assertIsInstance(errors[0].status, NotFoundException)

    def test_flush_async_callback_failure_is_logged(self):
        self.session.set_flush_mode(MANUAL_FLUSH)
        self.session.apply(new_insert(self.table, 1))

        def callback(status):
            raise ValueError("callback blew up")
        with self.assertLogs("pykudu.session", level="ERROR") as logs:
            future = self.session.flush_async(callback)
            self.assertIsNone(future.result(timeout=10))
        self.assertIn("Flush callback", logs.output[0])
        self.assertIn(1, scan_all(self.table))


class TestSessionTimeout(unittest.TestCase):
    # A single tablet server, stopped once the table exists, so every write
    # has nowhere to go.

    @classmethod
    def setUpClass(cls):
        cls.transport = LocalTransport()
        cls.cluster = MiniCluster("127.0.0.1:17111", num_tablet_servers=1,
                                  transport=cls.transport).start()
        cls.c = pykudu.ClientBuilder().master_server_addr(cls.cluster.master_addr) \
            .transport(cls.transport).build()
        cls.c.new_table_creator().table_name(table_name).schema(make_schema()).create()
        cls.table = cls.c.open_table(table_name)
        cls.cluster.tablet_servers[0].shutdown()

    @classmethod
    def tearDownClass(cls):
        cls.c.close()
        cls.cluster.shutdown()

    def test_flush_respects_timeout(self):
        session = self.c.new_session()
        session.set_flush_mode(MANUAL_FLUSH)
        session.set_timeout_millis(500)
        # Backoff grows with every retry, later flushes must stay bounded too.
        for attempt in range(3):
            session.apply(new_insert(self.table, attempt))
            start = time()
            with self.assertRaises(IOErrorException):
                session.flush()
            self.assertLess(time() - start, 1.5)
            errors, overflowed = session.get_pending_errors()
            self.assertFalse(overflowed)
            self.assertEqual(len(errors), 1)
            self.assertIsInstance(errors[0].status, KuduException)
            if attempt == 0:
                self.assertIsInstance(errors[0].status, TimedOutException)
                self.assertTrue(errors[0].was_possibly_successful())


if __name__ == '__main__':
    unittest.main()
