import csv
import tempfile
import unittest
from datetime import datetime, timezone
from pathlib import Path

from sharebench.probe import RunMode, Sample
from sharebench.sample_log import FIELDNAMES, SampleLog


def make_sample(server="fs01", mode=RunMode.COLD, status="OK", write_mbps=812.5, read_mbps=640.25):
    return Sample(
        server=server,
        timestamp=datetime(2024, 5, 1, 9, 30, 0, tzinfo=timezone.utc),
        status=status,
        write_seconds=5.04,
        write_mbps=write_mbps if status == "OK" else 0.0,
        read_seconds=6.4,
        read_mbps=read_mbps if status == "OK" else 0.0,
        source_host="src01",
        payload_size_bytes=536870912,
        mode=mode,
    )


class TestSampleLog(unittest.TestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.path = Path(self._tmp.name) / "shared" / "SpeedTest.csv"
        self.log = SampleLog(self.path)

    def tearDown(self):
        self._tmp.cleanup()

    def _rows(self):
        with self.path.open(newline="", encoding="utf-8") as fh:
            return list(csv.reader(fh))

    def test_header_and_columns(self):
        self.log.append(make_sample())
        rows = self._rows()
        self.assertEqual(rows[0], FIELDNAMES)
        self.assertEqual(rows[1], [
            "fs01", "2024-05-01 09:30:00", "OK", "5.04", "812.5", "6.4", "640.25", "src01", "536870912", "True",
        ])

    def test_append_keeps_prior_rows_and_single_header(self):
        self.log.append(make_sample())
        first = self.path.read_text(encoding="utf-8")
        self.log.append(make_sample(mode=RunMode.WARM))
        self.log.append_many([make_sample(server="fs02", status="copy failed")])
        text = self.path.read_text(encoding="utf-8")
        self.assertTrue(text.startswith(first))
        rows = self._rows()
        self.assertEqual(len(rows), 4)
        self.assertEqual(sum(1 for r in rows if r == FIELDNAMES), 1)
        self.assertEqual(rows[2][-1], "False")
        self.assertEqual(rows[3][2], "copy failed")

    def test_append_many_empty_is_noop(self):
        self.assertEqual(self.log.append_many([]), 0)
        self.assertFalse(self.path.exists())

    def test_read_back(self):
        self.log.append_many([make_sample(), make_sample(mode=RunMode.WARM)])
        df = self.log.read()
        self.assertEqual(list(df.columns), FIELDNAMES)
        self.assertEqual(len(df), 2)
        self.assertEqual(df["WriteMbps"].tolist(), [812.5, 812.5])

    def test_read_missing_log(self):
        self.assertTrue(self.log.read().empty)


if __name__ == "__main__":
    unittest.main()
