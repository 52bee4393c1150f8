import os
import tempfile
import threading
import unittest
from datetime import datetime, timedelta

from sqlmodel import Session, select

from querydesk.app.models.schema import ColumnDescriptor, SchemaDocument, TableDescriptor
from querydesk.app.models.schema_cache import SchemaCache
from querydesk.app.services.schema_service import SchemaCacheStore
from querydesk.tests.support import add_data_source, system_engine


def document(table="customers"):
    return SchemaDocument(
        database_type="MYSQL",
        database_name="main",
        tables=[TableDescriptor(name=table, columns=[ColumnDescriptor(name="id", type="INT")], primary_keys=["id"])],
        discovered_at=datetime(2024, 1, 1, 12, 0, 0),
    )


class FakeClock:
    def __init__(self):
        self.now = datetime(2024, 1, 1, 12, 0, 0)

    def __call__(self):
        return self.now


class TestSchemaCacheStore(unittest.TestCase):
    def setUp(self):
        self.engine = system_engine()
        self.ds_id = add_data_source(self.engine)
        self.clock = FakeClock()
        self.cache = SchemaCacheStore(ttl=timedelta(hours=1), clock=self.clock)

    def tearDown(self):
        self.engine.dispose()

    def test_put_then_get(self):
        with Session(self.engine) as session:
            self.assertIsNone(self.cache.get(session, self.ds_id))
            self.assertTrue(self.cache.put(session, self.ds_id, document()))
            self.assertEqual(self.cache.get(session, self.ds_id), document())

            entry = session.exec(select(SchemaCache)).one()
            self.assertEqual(entry.expires_at - entry.cached_at, timedelta(hours=1))

    def test_entry_expires(self):
        with Session(self.engine) as session:
            self.cache.put(session, self.ds_id, document())
            self.clock.now += timedelta(minutes=59)
            self.assertIsNotNone(self.cache.get(session, self.ds_id))
            self.clock.now += timedelta(minutes=1)
            self.assertIsNone(self.cache.get(session, self.ds_id))

    def test_put_replaces_entry(self):
        with Session(self.engine) as session:
            self.cache.put(session, self.ds_id, document("a"))
            self.cache.put(session, self.ds_id, document("b"))
            self.assertEqual(len(session.exec(select(SchemaCache)).all()), 1)
            self.assertEqual(self.cache.get(session, self.ds_id).tables[0].name, "b")

    def test_explicit_ttl(self):
        with Session(self.engine) as session:
            self.cache.put(session, self.ds_id, document(), ttl=timedelta(seconds=5))
            self.clock.now += timedelta(seconds=6)
            self.assertIsNone(self.cache.get(session, self.ds_id))

    def test_invalidate(self):
        with Session(self.engine) as session:
            self.cache.put(session, self.ds_id, document())
            self.cache.invalidate(session, self.ds_id)
            self.assertIsNone(self.cache.get(session, self.ds_id))
            self.assertEqual(session.exec(select(SchemaCache)).all(), [])

    def test_discovery_started_before_invalidate_is_discarded(self):
        with Session(self.engine) as session:
            generation = self.cache.generation(self.ds_id)
            self.cache.invalidate(session, self.ds_id)

            self.assertFalse(self.cache.put(session, self.ds_id, document(), generation=generation))
            self.assertIsNone(self.cache.get(session, self.ds_id))

            fresh = self.cache.generation(self.ds_id)
            self.assertTrue(self.cache.put(session, self.ds_id, document(), generation=fresh))

    def test_corrupt_entry_is_a_miss_and_purged(self):
        with Session(self.engine) as session:
            session.add(SchemaCache(
                data_source_id=self.ds_id,
                schema_data="{not json",
                cached_at=self.clock.now,
                expires_at=self.clock.now + timedelta(hours=1),
            ))
            session.commit()

            self.assertIsNone(self.cache.get(session, self.ds_id))
            self.assertEqual(session.exec(select(SchemaCache)).all(), [])

    def test_entries_are_per_data_source(self):
        other_id = add_data_source(self.engine, name="other")
        with Session(self.engine) as session:
            self.cache.put(session, self.ds_id, document("a"))
            self.cache.put(session, other_id, document("b"))
            self.cache.invalidate(session, self.ds_id)
            self.assertIsNone(self.cache.get(session, self.ds_id))
            self.assertEqual(self.cache.get(session, other_id).tables[0].name, "b")


class TestConcurrentPuts(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.engine = system_engine(f"sqlite:///{os.path.join(self.tmp.name, 'system.db')}")
        self.ds_id = add_data_source(self.engine)
        self.cache = SchemaCacheStore(ttl=timedelta(hours=1))

    def tearDown(self):
        self.engine.dispose()
        self.tmp.cleanup()

    def test_one_entry_survives(self):
        errors = []
        start = threading.Barrier(8)

        def worker(n):
            try:
                start.wait()
                with Session(self.engine) as session:
                    self.cache.put(session, self.ds_id, document(f"t{n}"))
            except Exception as e:  # surfaced through the assertion below
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(errors, [])
        with Session(self.engine) as session:
            entries = session.exec(select(SchemaCache)).all()
            self.assertEqual(len(entries), 1)
            self.assertIsNotNone(self.cache.get(session, self.ds_id))


if __name__ == "__main__":
    unittest.main()
