import asyncio
import json
import tempfile
import unittest
from pathlib import Path

from ingenierostint.core.stats import RuntimeStats, StatsReporter
from ingenierostint.ingest.recorder import encode_line
from ingenierostint.ingest.replay import PacketReplayer, ReplayStats, iter_capture
from ingenierostint.telemetry.protocol import encode_message


class TestCaptureReplay(unittest.TestCase):
    def write_capture(self, d: str) -> Path:
        p = Path(d) / "cap_stint.jsonl"
        lines = [
            encode_line(1_000_000_000, encode_message("telemetry", {"LapCompleted": 1})),
            "{broken\n",
            json.dumps({"ts_ns": 2_000_000_000, "data": {"type": "telemetry", "data": {"LapCompleted": 2}}}) + "\n",
            "\n",
            json.dumps({"data": "x"}) + "\n",
        ]
        p.write_text("".join(lines), encoding="utf-8")
        return p

    def test_iter_capture_skips_broken_lines(self):
        with tempfile.TemporaryDirectory() as d:
            p = self.write_capture(d)
            stats = ReplayStats()
            out = list(iter_capture(str(p), stats))

        self.assertEqual([ts for ts, _ in out], [1_000_000_000, 2_000_000_000])
        self.assertEqual(stats.skipped, 2)
        self.assertEqual(json.loads(out[0][1])["data"], {"LapCompleted": 1})
        self.assertEqual(json.loads(out[1][1])["type"], "telemetry")

    def test_replayer_no_sleep_fills_queue(self):
        with tempfile.TemporaryDirectory() as d:
            p = self.write_capture(d)

            async def go():
                q: asyncio.Queue[bytes] = asyncio.Queue()
                rp = PacketReplayer(str(p), no_sleep=True)
                await rp.run(q)
                return rp, [q.get_nowait() for _ in range(q.qsize())]

            rp, items = asyncio.run(go())

        self.assertEqual(rp.stats.sent, 2)
        self.assertEqual(len(items), 2)


class TestStatsReporter(unittest.TestCase):
    def test_format_line_has_counters(self):
        stats = RuntimeStats(udp_received=5, published=2, publish_suppressed=1)
        stats.by_kind["telemetry"] = 5
        line = StatsReporter(stats, interval_s=5.0).format_line(now=0.0)
        self.assertIn("udp_rx=5", line)
        self.assertIn("pub=2", line)
        self.assertIn("pub_supp=1", line)
        self.assertIn("'telemetry': 5", line)


if __name__ == "__main__":
    unittest.main(verbosity=2)
