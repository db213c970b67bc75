from __future__ import annotations

import asyncio
import logging

from ingenierostint.comms.logger_sink import LoggerComms
from ingenierostint.core.config import AppConfig
from ingenierostint.core.logging_setup import setup_logging
from ingenierostint.core.stats import RuntimeStats, StatsReporter
from ingenierostint.engine.engine import TelemetryEngine
from ingenierostint.engine.tuning import load_tuning
from ingenierostint.ingest.recorder import PacketRecorder
from ingenierostint.ingest.replay import PacketReplayer
from ingenierostint.sync.channel import UdpPeerChannel
from ingenierostint.sync.replicator import StateReplicator
from ingenierostint.sync.store import JsonFileStore
from ingenierostint.telemetry.dispatcher import MessageDispatcher
from ingenierostint.telemetry.udp_listener import UdpListener

REPLICATION_TICK_S = 0.5


def build_runtime(cfg: AppConfig, stats: RuntimeStats) -> tuple[TelemetryEngine, StateReplicator, UdpPeerChannel]:
    tuning = load_tuning(cfg.tuning_path)
    engine = TelemetryEngine.create(tuning)
    channel = UdpPeerChannel(cfg.peers)
    replicator = StateReplicator(
        engine,
        channel,
        JsonFileStore(cfg.store_dir),
        instance_id=cfg.instance_id,
        publish_interval_s=cfg.publish_interval_s,
        save_interval_s=cfg.save_interval_s,
        apply_guard_s=cfg.apply_guard_s,
        persistence_enabled=cfg.persistence_enabled,
        retention_s=cfg.retention_s,
        stats=stats,
    )
    return engine, replicator, channel


async def run_app(cfg: AppConfig) -> None:
    setup_logging(cfg)
    log = logging.getLogger("ingenierostint")
    state_log = logging.getLogger("ingenierostint.state_snapshot")

    raw_queue: asyncio.Queue[bytes] = asyncio.Queue(maxsize=cfg.queue_maxsize)
    dispatch_queue: asyncio.Queue[bytes] = asyncio.Queue(maxsize=cfg.queue_maxsize)

    stats = RuntimeStats()
    engine, replicator, channel = build_runtime(cfg, stats)
    comms = LoggerComms()

    await channel.open()
    replicator.restore()
    replicator.request_initial_state()

    dispatcher = MessageDispatcher(engine, replicator, comms, stats)
    recorder = PacketRecorder(out_dir=cfg.record_dir, enabled=cfg.record_enabled)
    reporter = StatsReporter(
        stats=stats,
        interval_s=cfg.stats_interval_s,
        raw_queue=None if cfg.replay_path else raw_queue,
        recorder=recorder if cfg.record_enabled else None,
    )

    async def _replication_loop() -> None:
        # push periódico + guardado; fallos se registran y reintentan en el próximo tick
        while True:
            await asyncio.sleep(REPLICATION_TICK_S)
            replicator.tick()

    async def _state_reporter() -> None:
        while True:
            await asyncio.sleep(cfg.state_interval_s)
            if engine.state.last_lap_completed < 0 and engine.state.fuel_level <= 0:
                continue
            state_log.info(engine.format_one_line())

    listener: UdpListener | None = None
    replayer: PacketReplayer | None = None

    tasks: list[asyncio.Task] = []
    tasks.append(asyncio.create_task(dispatcher.run(dispatch_queue), name="message-dispatcher"))
    tasks.append(asyncio.create_task(reporter.run(), name="stats-reporter"))
    tasks.append(asyncio.create_task(_state_reporter(), name="state-reporter"))
    tasks.append(asyncio.create_task(_replication_loop(), name="replication"))

    if cfg.record_enabled:
        tasks.append(asyncio.create_task(recorder.run(), name="recorder"))

    if cfg.replay_path:
        log.info("Mode=REPLAY path=%s record=%s instance=%s", cfg.replay_path, cfg.record_enabled, cfg.instance_id)
        replayer = PacketReplayer(path=cfg.replay_path, speed=cfg.replay_speed, no_sleep=cfg.replay_no_sleep)

        async def _replay_fanout() -> None:
            tmp_queue: asyncio.Queue[bytes] = asyncio.Queue(maxsize=cfg.queue_maxsize)
            replay_task = asyncio.create_task(replayer.run(tmp_queue), name="replayer")
            try:
                while True:
                    get_task = asyncio.create_task(tmp_queue.get())
                    done, _ = await asyncio.wait({get_task, replay_task}, return_when=asyncio.FIRST_COMPLETED)

                    if get_task in done:
                        data = get_task.result()
                        stats.replay_sent += 1
                        if cfg.record_enabled:
                            recorder.try_enqueue(data)
                        await dispatch_queue.put(data)
                        continue

                    get_task.cancel()
                    # drenar lo que quedó encolado antes de terminar
                    while not tmp_queue.empty():
                        await dispatch_queue.put(tmp_queue.get_nowait())
                    break

                while not dispatch_queue.empty():
                    await asyncio.sleep(0.05)
            finally:
                reporter.stop()
                dispatcher.stop()
                recorder.stop()
                replayer.stop()
                for t in tasks:
                    if t is not asyncio.current_task():
                        t.cancel()

        tasks.append(asyncio.create_task(_replay_fanout(), name="replay-fanout"))

    else:
        log.info("Mode=UDP listen=%s record=%s instance=%s peers=%s", cfg.listen, cfg.record_enabled, cfg.instance_id, list(cfg.peers))
        listener = UdpListener(cfg.listen_host, cfg.listen_port, raw_queue, drop_when_full=True, stats=stats)
        tasks.append(asyncio.create_task(listener.run(), name="udp-listener"))

        async def _udp_fanout() -> None:
            while True:
                data = await raw_queue.get()
                if cfg.record_enabled:
                    recorder.try_enqueue(data)
                await dispatch_queue.put(data)

        tasks.append(asyncio.create_task(_udp_fanout(), name="udp-fanout"))

    try:
        await asyncio.gather(*tasks)
    except asyncio.CancelledError:
        pass
    finally:
        log.info("Shutting down...")
        replicator.shutdown()
        reporter.stop()
        dispatcher.stop()
        recorder.stop()
        if listener:
            listener.stop()
        if replayer:
            replayer.stop()
        channel.close()
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
