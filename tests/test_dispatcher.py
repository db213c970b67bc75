import json
import unittest
from unittest import mock

from ingenierostint.comms.logger_sink import LoggerComms
from ingenierostint.core.stats import RuntimeStats
from ingenierostint.engine.engine import TelemetryEngine
from ingenierostint.sync.channel import LocalBus
from ingenierostint.sync.envelope import MessageType, RemoteStateEnvelope
from ingenierostint.sync.replicator import StateReplicator
from ingenierostint.sync.store import MemoryStore
from ingenierostint.telemetry.dispatcher import MessageDispatcher
from ingenierostint.telemetry.protocol import InboundMessage, MessageKind, encode_message


def telemetry(lap: int, fuel: float, on_track: bool = True) -> bytes:
    return encode_message("telemetry", {"IsOnTrack": on_track, "LapCompleted": lap, "FuelLevel": fuel})


class TestProtocol(unittest.TestCase):
    def test_try_parse_shapes(self):
        self.assertEqual(InboundMessage.try_parse(telemetry(1, 50.0)).kind, MessageKind.TELEMETRY)
        raw = json.dumps({"values": {"LapCompleted": 2}})
        self.assertEqual(InboundMessage.try_parse(raw).kind, MessageKind.TELEMETRY)
        si = json.dumps({"WeekendInfo": {"SessionID": 1}})
        self.assertEqual(InboundMessage.try_parse(si).kind, MessageKind.SESSION_INFO)
        cmd = InboundMessage.try_parse(b'{"type":"command","command":"persistence","enabled":false}')
        self.assertEqual(cmd.kind, MessageKind.COMMAND)
        self.assertEqual(cmd.data, {"command": "persistence", "enabled": False})

        env = RemoteStateEnvelope.state("peer-1", {"last_lap_completed": 3}, sent_at=1.0)
        msg = InboundMessage.try_parse(env.encode())
        self.assertEqual(msg.kind, MessageKind.PEER)
        self.assertEqual(msg.envelope, env)

    def test_try_parse_rejects_garbage(self):
        for data in (b"\xff\xfe", b"not json", b"[1,2]", b'{"type":"command","command":"format-c"}',
                     b'{"type":"state"}', b'{"type":"persistence","origin":"x"}', b'{"hello":1}'):
            self.assertIsNone(InboundMessage.try_parse(data), data)

    def test_envelope_never_carries_raw_sample(self):
        env = RemoteStateEnvelope.state("a", {"gated": {"x": 1}, "bufferedData": [], "last_lap_completed": 1})
        self.assertEqual(dict(env.payload), {"last_lap_completed": 1})
        decoded = RemoteStateEnvelope.decode(json.dumps({"type": "state", "origin": "b", "payload": {"gated": 1}}))
        self.assertEqual(dict(decoded.payload), {})
        ctl = RemoteStateEnvelope.control(MessageType.PERSISTENCE, "a", enabled=True)
        self.assertEqual(RemoteStateEnvelope.decode(ctl.encode()).enabled, True)


class TestMessageDispatcher(unittest.TestCase):
    def setUp(self):
        self.stats = RuntimeStats()
        self.engine = TelemetryEngine.create()
        self.bus = LocalBus()
        self.ep = self.bus.attach("local")
        self.rep = StateReplicator(self.engine, self.ep, MemoryStore(), instance_id="local", stats=self.stats)
        self.comms = LoggerComms()
        self.disp = MessageDispatcher(self.engine, self.rep, self.comms, self.stats, clock=lambda: 0.0)

    def test_bad_datagram_is_counted(self):
        self.assertIsNone(self.disp.handle(b"\x00garbage"))
        self.assertEqual(self.stats.dropped_bad_message, 1)
        self.assertEqual(self.stats.dispatched_in, 1)

    def test_telemetry_flows_to_engine_and_comms(self):
        self.assertEqual(self.disp.handle(telemetry(0, 104.0)), MessageKind.TELEMETRY)
        self.disp.handle(telemetry(1, 101.0))

        self.assertEqual(self.stats.samples_in, 2)
        self.assertEqual(self.stats.laps_processed, 1)
        self.assertEqual(self.stats.by_kind["telemetry"], 2)
        self.assertEqual(self.engine.state.last_lap_completed, 1)
        self.assertGreater(self.comms.emitted, 0)
        self.assertEqual(self.comms.last_record["last_lap_completed"], 1)
        # entrada de piloto y vuelta completa disparan publish inmediato
        self.assertGreaterEqual(self.stats.published, 2)

    def test_session_info_updates_tank_and_session(self):
        info = {"WeekendInfo": {"SessionID": 7}, "DriverInfo": {"DriverCarFuelMaxLtr": 110.0,
                                                                "Drivers": [{"UserName": "Ana"}]}}
        self.assertEqual(self.disp.handle(encode_message("sessionInfo", info)), MessageKind.SESSION_INFO)
        self.assertEqual(self.engine.state.tank_capacity_l, 110.0)
        self.assertEqual(self.engine.state.session_id, 7)
        self.assertEqual(self.engine.derived_record()["broadcaster"], "Ana")

        self.disp.handle(telemetry(0, 110.0))
        self.disp.handle(telemetry(1, 107.0))
        self.assertEqual(self.engine.state.last_lap_completed, 1)

        info["WeekendInfo"]["SessionID"] = 8
        self.disp.handle(encode_message("sessionInfo", info))
        self.assertEqual(self.engine.state.last_lap_completed, -1)
        self.assertEqual(self.engine.state.session_id, 8)
        self.assertEqual(self.engine.state.tank_capacity_l, 110.0)

    def test_peer_state_is_applied(self):
        env = RemoteStateEnvelope.state("remote", {"last_lap_completed": 12}, sent_at=0.0)
        self.assertEqual(self.disp.handle(env.encode()), MessageKind.PEER)
        self.assertEqual(self.engine.state.last_lap_completed, 12)
        self.assertEqual(self.stats.last_origin, "remote")
        self.assertEqual(self.comms.last_record["last_lap_completed"], 12)

    def test_peer_message_without_envelope_is_ignored(self):
        bare = InboundMessage(MessageKind.PEER)
        with mock.patch.object(InboundMessage, "try_parse", return_value=bare):
            self.assertEqual(self.disp.handle(b"{}"), MessageKind.PEER)
        self.assertEqual(self.stats.decode_errors, 0)
        self.assertIsNone(self.stats.last_origin)
        self.assertEqual(self.comms.emitted, 0)

    def test_operator_commands(self):
        self.disp.handle(telemetry(0, 104.0))
        self.disp.handle(telemetry(1, 101.0))
        sent = self.bus.sent

        self.disp.handle(b'{"type":"command","command":"reset"}')
        self.assertEqual(self.engine.state.last_lap_completed, -1)
        self.assertEqual(self.bus.sent, sent + 1)

        self.disp.handle(b'{"type":"command","command":"persistence","enabled":false}')
        self.assertFalse(self.rep.persistence_enabled)


if __name__ == "__main__":
    unittest.main(verbosity=2)
