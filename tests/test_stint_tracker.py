import unittest

from ingenierostint.engine.engine import TelemetryEngine
from ingenierostint.telemetry.sample import Sample

WEAR_BEFORE = {c: {"L": 0.8, "M": 0.75, "R": 0.7} for c in ("LF", "RF", "LR", "RR")}


def drive(lap: int, fuel: float, remain: float, *, pit: bool = False, on_track: bool = True,
          incidents: int = 0, wear=None) -> Sample:
    return Sample(
        on_track=on_track,
        on_pit_road=pit,
        lap_completed=lap,
        fuel_level=fuel,
        session_time_remain=remain,
        incident_count=incidents,
        tire_wear=wear,
    )


class TestPitRoadDetector(unittest.TestCase):
    def setUp(self):
        self.eng = TelemetryEngine.create()
        self.eng.ingest(drive(3, 80.0, 3000.0, incidents=2), now=0.0)

    def keys(self, events):
        return [e.key for e in events]

    def test_pit_stop_closes_stint(self):
        eng = self.eng
        ev = eng.ingest(drive(13, 50.0, 1800.0, pit=True, incidents=6, wear=WEAR_BEFORE), now=1200.0)
        self.assertIn("pit_entry", self.keys(ev))
        self.assertEqual(eng.state.stint.stint_number, 1)

        ev = eng.ingest(drive(13, 104.0, 1740.0, incidents=6), now=1260.0)
        self.assertIn("stint_boundary", self.keys(ev))
        self.assertTrue(next(e for e in ev if e.key == "stint_boundary").publish)

        stint = eng.state.stint
        self.assertEqual(stint.stint_number, 2)
        self.assertEqual(stint.duration_history.to_list(), [1200.0])
        self.assertEqual(stint.lap_count_history.to_list(), [10.0])
        self.assertEqual(stint.pit_duration_history.to_list(), [60.0])
        self.assertEqual(stint.avg_pit_duration, 60.0)

        sm = stint.last_summary
        self.assertEqual(sm.source, "pit_road")
        self.assertEqual(sm.lap_count, 10)
        self.assertEqual(sm.fuel_used, 30.0)
        self.assertEqual(sm.avg_fuel_per_lap, 3.0)
        self.assertEqual(sm.avg_lap_time, 120.0)
        self.assertEqual(sm.incidents, 4)
        self.assertEqual(sm.tire_wear, WEAR_BEFORE)
        self.assertEqual(stint.last_tire_wear_snapshot, WEAR_BEFORE)

        # el nuevo stint arranca en la salida de boxes
        self.assertEqual(stint.start_lap, 13)
        self.assertEqual(stint.start_fuel, 104.0)
        self.assertEqual(stint.start_session_time, 1740.0)
        self.assertEqual(eng.state.incident_count_at_stint_start, 6)

    def test_pit_flag_flicker_is_not_a_boundary(self):
        eng = self.eng
        before = eng.state.stint.start_session_time
        eng.ingest(drive(8, 65.0, 2400.0, pit=True), now=600.0)
        ev = eng.ingest(drive(8, 65.0, 2397.0), now=603.0)

        self.assertIn("pit_glitch", self.keys(ev))
        self.assertNotIn("stint_boundary", self.keys(ev))
        stint = eng.state.stint
        self.assertEqual(stint.stint_number, 1)
        self.assertEqual(len(stint.duration_history), 0)
        self.assertEqual(len(stint.pit_duration_history), 0)
        self.assertIsNone(stint.last_summary)
        self.assertEqual(stint.start_session_time, before)

    def test_long_stop_closes_stint_without_pit_duration(self):
        eng = self.eng
        eng.ingest(drive(13, 50.0, 1800.0, pit=True), now=1200.0)
        ev = eng.ingest(drive(13, 104.0, 1400.0), now=1600.0)

        self.assertIn("stint_boundary", self.keys(ev))
        stint = eng.state.stint
        self.assertEqual(stint.stint_number, 2)
        self.assertEqual(len(stint.duration_history), 1)
        self.assertEqual(len(stint.pit_duration_history), 0)

    def test_start_in_pits_only_opens_first_stint(self):
        eng = TelemetryEngine.create()
        eng.ingest(drive(0, 104.0, 3600.0, pit=True), now=0.0)
        self.assertIsNone(eng.state.stint.start_session_time)

        ev = eng.ingest(drive(0, 104.0, 3580.0), now=20.0)
        self.assertIn("pit_exit", self.keys(ev))
        self.assertNotIn("stint_boundary", self.keys(ev))
        self.assertEqual(eng.state.stint.stint_number, 1)
        self.assertEqual(eng.state.stint.start_session_time, 3580.0)


class TestTrackOccupancyDetector(unittest.TestCase):
    def test_driver_exit_records_summary(self):
        eng = TelemetryEngine.create()
        eng.ingest(drive(0, 104.0, 3600.0, incidents=1), now=0.0)
        for lap in range(1, 5):
            eng.ingest(drive(lap, 104.0 - 3.0 * lap, 3600.0 - 100.0 * lap, incidents=1 + lap), now=100.0 * lap)

        ev = eng.ingest(drive(4, 92.0, 3100.0, on_track=False, incidents=5, wear=WEAR_BEFORE), now=500.0)
        exited = next(e for e in ev if e.key == "driver_exited")
        self.assertTrue(exited.publish)

        sm = eng.state.stint.last_summary
        self.assertEqual(sm.source, "track_occupancy")
        self.assertEqual(sm.lap_count, 4)
        self.assertEqual(sm.duration_s, 500.0)
        self.assertEqual(sm.avg_fuel_per_lap, 3.0)
        self.assertEqual(sm.avg_lap_time, 100.0)
        self.assertEqual(sm.incidents, 4)
        self.assertEqual(eng.state.stint.duration_history.to_list(), [500.0])
        self.assertEqual(eng.state.stint.lap_count_history.to_list(), [4.0])

    def test_incidents_reported_relative_to_stint_start(self):
        eng = TelemetryEngine.create()
        eng.ingest(drive(0, 104.0, 3600.0, incidents=7), now=0.0)
        eng.ingest(drive(1, 101.0, 3500.0, incidents=9), now=100.0)
        self.assertEqual(eng.derived_record()["stint"]["incidents"], 2)


if __name__ == "__main__":
    unittest.main(verbosity=2)
