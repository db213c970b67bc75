import unittest
from types import SimpleNamespace

from ingenierostint.core.config import AppConfig, parse_hostport


class TestConfigDefaults(unittest.TestCase):
    def test_defaults_exist(self):
        cfg = AppConfig.from_obj(SimpleNamespace())
        self.assertEqual(cfg.log_dir, "logs")
        self.assertEqual(cfg.queue_maxsize, 2048)
        self.assertEqual(cfg.listen, "0.0.0.0:20778")
        self.assertEqual(cfg.replay_speed, 1.0)
        self.assertEqual(cfg.publish_interval_s, 5.0)
        self.assertEqual(cfg.retention_s, 8 * 60 * 60)
        self.assertTrue(cfg.persistence_enabled)
        self.assertEqual(cfg.peers, ())

    def test_instance_id_generated_when_missing(self):
        a = AppConfig()
        b = AppConfig()
        self.assertTrue(a.instance_id)
        self.assertNotEqual(a.instance_id, b.instance_id)
        self.assertEqual(AppConfig(instance_id="pit-wall").instance_id, "pit-wall")

    def test_from_env_coerces_types(self):
        cfg = AppConfig.from_env(
            {
                "INGSTINT_LISTEN_PORT": "21000",
                "INGSTINT_PERSISTENCE_ENABLED": "false",
                "INGSTINT_PEERS": "10.0.0.2:20778, 10.0.0.3",
                "INGSTINT_APPLY_GUARD_S": "0.25",
                "INGSTINT_RETENTION_S": "3600.5",
                "INGSTINT_LOG_LEVEL": "",
            }
        )
        self.assertEqual(cfg.listen_port, 21000)
        self.assertFalse(cfg.persistence_enabled)
        self.assertEqual(cfg.peers, ("10.0.0.2:20778", "10.0.0.3"))
        self.assertEqual(cfg.apply_guard_s, 0.25)
        self.assertEqual(cfg.retention_s, 3600.5)
        self.assertEqual(cfg.log_level, "INFO")

    def test_override_ignores_none(self):
        cfg = AppConfig(listen_port=20778, instance_id="a").override(listen_port=None, peers=["x:1"], log_level="DEBUG")
        self.assertEqual(cfg.listen_port, 20778)
        self.assertEqual(cfg.peers, ("x:1",))
        self.assertEqual(cfg.log_level, "DEBUG")
        self.assertEqual(cfg.instance_id, "a")

    def test_parse_hostport(self):
        self.assertEqual(parse_hostport("10.0.0.2:9000"), ("10.0.0.2", 9000))
        self.assertEqual(parse_hostport("box-pc"), ("box-pc", 20778))
        self.assertEqual(parse_hostport(":9000"), ("127.0.0.1", 9000))


if __name__ == "__main__":
    unittest.main(verbosity=2)
