import unittest

from ingenierostint.telemetry.sample import INVALID_LAP, normalize_sample, normalize_session_info


class TestSampleNormalizer(unittest.TestCase):
    def test_flat_and_wrapped_shapes(self):
        raw = {
            "IsOnTrack": True,
            "OnPitRoad": False,
            "LapCompleted": 12,
            "LapDistPct": 0.42,
            "FuelLevel": 55.5,
            "SessionTimeRemain": 3600.0,
            "LapLastLapTime": 98.7,
            "PlayerCarDriverIncidentCount": 3,
        }
        for shape in (raw, {"values": raw}):
            s = normalize_sample(shape)
            self.assertTrue(s.on_track)
            self.assertFalse(s.on_pit_road)
            self.assertEqual(s.lap_completed, 12)
            self.assertAlmostEqual(s.lap_dist_pct, 0.42)
            self.assertEqual(s.fuel_level, 55.5)
            self.assertEqual(s.session_time_remain, 3600.0)
            self.assertEqual(s.last_lap_time, 98.7)
            self.assertEqual(s.incident_count, 3)
            self.assertIsNone(s.tire_wear)

    def test_player_indexed_arrays(self):
        raw = {
            "PlayerCarIdx": 2,
            "CarIdxLapCompleted": [7, 8, 9],
            "CarIdxOnPitRoad": [False, False, True],
            "LapCompleted": 1,
        }
        s = normalize_sample(raw)
        self.assertEqual(s.lap_completed, 9)
        self.assertTrue(s.on_pit_road)

    def test_missing_and_garbage_fields_get_neutral_values(self):
        s = normalize_sample({"FuelLevel": "abc", "LapCompleted": None, "LapDistPct": 7.0, "IsOnTrack": "yes"})
        self.assertTrue(s.on_track)
        self.assertEqual(s.fuel_level, 0.0)
        self.assertEqual(s.lap_completed, INVALID_LAP)
        self.assertFalse(s.lap_valid)
        self.assertLess(s.lap_dist_pct, 1.0)

        empty = normalize_sample(None)
        self.assertFalse(empty.on_track)
        self.assertEqual(empty.lap_completed, INVALID_LAP)

    def test_nan_and_negative_values(self):
        s = normalize_sample({"FuelLevel": float("nan"), "LapCompleted": -5, "LapLastLapTime": -1.0})
        self.assertEqual(s.fuel_level, 0.0)
        self.assertEqual(s.lap_completed, INVALID_LAP)
        self.assertIsNone(s.last_lap_time)

    def test_tire_wear_is_clamped(self):
        s = normalize_sample({"LFwearL": 0.9, "LFwearM": 1.5, "RRwearR": -0.2})
        self.assertIsNotNone(s.tire_wear)
        self.assertEqual(set(s.tire_wear), {"LF", "RF", "LR", "RR"})
        self.assertEqual(s.tire_wear["LF"], {"L": 0.9, "M": 1.0, "R": 0.0})
        self.assertEqual(s.tire_wear["RR"]["R"], 0.0)


class TestSessionInfoNormalizer(unittest.TestCase):
    def test_session_info_fields(self):
        raw = {
            "WeekendInfo": {"SessionID": 4711, "TrackLength": "5.51 km"},
            "DriverInfo": {
                "DriverCarFuelMaxLtr": 110.0,
                "Drivers": [{"UserName": "Ana Rossi"}, {"UserName": "Pace Car"}, {}],
            },
            "SessionInfo": {"Sessions": [{"SessionTime": "600.0000 sec"}, {"SessionTime": "21600.0000 sec"}]},
        }
        meta = normalize_session_info(raw)
        self.assertEqual(meta.session_id, 4711)
        self.assertAlmostEqual(meta.track_length_km, 5.51)
        self.assertEqual(meta.tank_capacity_l, 110.0)
        self.assertEqual(meta.session_duration_s, 21600.0)
        self.assertEqual(meta.drivers, ("Ana Rossi", "Pace Car"))
        self.assertEqual(meta.broadcaster, "Ana Rossi")

    def test_bad_session_info(self):
        meta = normalize_session_info({"WeekendInfo": "x", "DriverInfo": {"DriverCarFuelMaxLtr": 0}})
        self.assertIsNone(meta.session_id)
        self.assertIsNone(meta.tank_capacity_l)
        self.assertIsNone(meta.broadcaster)
        self.assertIsNone(normalize_session_info([1, 2]).session_id)

    def test_drivers_not_a_list(self):
        meta = normalize_session_info({"DriverInfo": {"Drivers": 5, "DriverCarFuelMaxLtr": 80}})
        self.assertEqual(meta.drivers, ())
        self.assertEqual(meta.tank_capacity_l, 80.0)


if __name__ == "__main__":
    unittest.main(verbosity=2)
