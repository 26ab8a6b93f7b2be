import tempfile
import unittest
from pathlib import Path

from sharebench.warm_state import STATE_FILENAME, WarmEntry, WarmStateStore


class TestWarmStateStore(unittest.TestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.dir = Path(self._tmp.name) / "work"

    def tearDown(self):
        self._tmp.cleanup()

    def test_survives_a_new_store_instance(self):
        WarmStateStore(self.dir).put(r"\\fs01\data", WarmEntry("/w/payload.bin", "a.bin"))
        entry = WarmStateStore(self.dir).get(r"\\fs01\data")
        self.assertEqual(entry.payload_path, "/w/payload.bin")
        self.assertEqual(entry.read_file, "a.bin")

    def test_clear_only_touches_one_target(self):
        store = WarmStateStore(self.dir)
        store.put("t1", WarmEntry("/w/1.bin", "a"))
        store.put("t2", WarmEntry("/w/2.bin", "b"))
        store.clear("t1")
        self.assertIsNone(store.get("t1"))
        self.assertEqual(store.get("t2").read_file, "b")

    def test_corrupt_file_reads_as_empty(self):
        self.dir.mkdir(parents=True)
        (self.dir / STATE_FILENAME).write_text("{not json", encoding="utf-8")
        self.assertIsNone(WarmStateStore(self.dir).get("t1"))


if __name__ == "__main__":
    unittest.main()
