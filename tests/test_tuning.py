import json
import tempfile
import unittest
from pathlib import Path

from ingenierostint.engine.tuning import EngineTuning, load_tuning


class TestTuningLoad(unittest.TestCase):
    def test_default_when_no_path(self):
        t = load_tuning(None)
        self.assertEqual(t.tank_capacity_l, 104.0)
        self.assertEqual(t.settle_laps, 2)
        self.assertEqual((t.pit_min_s, t.pit_max_s), (10.0, 300.0))

    def test_load_tuning_utf8_bom(self):
        data = {"version": "gt3", "engine": {"settle_laps": 3}, "tank_capacity": 120}
        with tempfile.TemporaryDirectory() as d:
            p = Path(d) / "tuning.json"
            # Escribir con BOM explícito
            p.write_bytes(("\ufeff" + json.dumps(data)).encode("utf-8"))

            t = load_tuning(str(p))
        self.assertEqual(t.version, "gt3")
        self.assertEqual(t.settle_laps, 3)
        self.assertEqual(t.tank_capacity_l, 120.0)

    def test_invalid_json_raises_value_error(self):
        with tempfile.TemporaryDirectory() as d:
            p = Path(d) / "tuning.json"
            p.write_text("{nope", encoding="utf-8")
            with self.assertRaises(ValueError):
                load_tuning(p)

    def test_invalid_values(self):
        with self.assertRaises(ValueError):
            EngineTuning.from_mapping({"pit_min_s": 300, "pit_max_s": 10})
        with self.assertRaises(ValueError):
            EngineTuning.from_mapping({"settle_laps": "two"})
        with self.assertRaises(ValueError):
            EngineTuning.from_mapping({"settle_laps": -1})

    def test_override_keeps_previous_values(self):
        t = EngineTuning.from_mapping({"tank_capacity_l": 90}).override(settle_laps=1, pit_max_s=None)
        self.assertEqual(t.tank_capacity_l, 90.0)
        self.assertEqual(t.settle_laps, 1)
        self.assertEqual(t.pit_max_s, 300.0)


if __name__ == "__main__":
    unittest.main(verbosity=2)
