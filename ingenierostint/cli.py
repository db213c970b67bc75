from __future__ import annotations

import argparse
import asyncio

from ingenierostint.app import run_app
from ingenierostint.core.config import AppConfig
from ingenierostint.core.supervisor import RestartPolicy, run_with_supervisor


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="ingenierostint", add_help=True)
    p.add_argument("--listen-host", default=None, help="Host UDP (default: 0.0.0.0)")
    p.add_argument("--listen-port", type=int, default=None, help="Puerto UDP (default: 20778)")
    p.add_argument("--peer", action="append", default=None, metavar="HOST:PORT", help="Par para replicar estado (repetible)")
    p.add_argument("--instance-id", default=None, help="Id de esta instancia (default: aleatorio)")
    p.add_argument("--queue-maxsize", type=int, default=None, help="Tamaño de cola (default: 2048)")
    p.add_argument("--stats-interval", type=float, default=None, help="Segundos entre logs de salud (default: 5.0)")
    p.add_argument("--state-interval", type=float, default=None, help="Segundos entre snapshots de estado (default: 1.0)")
    p.add_argument("--tuning", default=None, help="JSON con constantes del motor")

    p.add_argument("--publish-interval", type=float, default=None, help="Segundos entre pushes de estado (default: 5.0)")
    p.add_argument("--save-interval", type=float, default=None, help="Segundos entre guardados (default: 5.0)")
    p.add_argument("--apply-guard", type=float, default=None, help="Ventana anti-eco en segundos (default: 0.5)")
    p.add_argument("--no-persistence", action="store_true", help="No restaurar ni guardar estado entre reinicios")
    p.add_argument("--store-dir", default=None, help="Carpeta del snapshot persistido (default: state)")
    p.add_argument("--retention", type=float, default=None, help="Vigencia del snapshot en segundos (default: 28800)")

    p.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Nivel de log (default: INFO)",
    )
    p.add_argument("--log-dir", default=None, help="Carpeta de logs (default: logs)")

    p.add_argument("--record", action="store_true", help="Grabar datagramas entrantes (JSON lines)")
    p.add_argument("--record-dir", default=None, help="Carpeta de grabación (default: recordings)")
    p.add_argument("--replay", default=None, help="Reproducir desde archivo .jsonl (sin UDP)")
    p.add_argument("--replay-speed", type=float, default=None, help="Velocidad replay (default: 1.0)")
    p.add_argument("--replay-no-sleep", action="store_true", help="Replay lo más rápido posible")

    p.add_argument("--no-supervisor", action="store_true", help="Ejecutar sin auto-restart")
    p.add_argument(
        "--max-restarts",
        type=int,
        default=None,
        help="Reinicios tras crash antes de abandonar (default: sin límite)",
    )
    return p


def config_from_args(args: argparse.Namespace, base: AppConfig | None = None) -> AppConfig:
    cfg = base if base is not None else AppConfig.from_env()
    return cfg.override(
        listen_host=args.listen_host,
        listen_port=args.listen_port,
        peers=args.peer,
        instance_id=args.instance_id,
        queue_maxsize=args.queue_maxsize,
        stats_interval_s=args.stats_interval,
        state_interval_s=args.state_interval,
        tuning_path=args.tuning,
        publish_interval_s=args.publish_interval,
        save_interval_s=args.save_interval,
        apply_guard_s=args.apply_guard,
        persistence_enabled=False if args.no_persistence else None,
        store_dir=args.store_dir,
        retention_s=args.retention,
        log_level=args.log_level,
        log_dir=args.log_dir,
        record_enabled=True if args.record else None,
        record_dir=args.record_dir,
        replay_path=args.replay,
        replay_speed=args.replay_speed,
        replay_no_sleep=True if args.replay_no_sleep else None,
    )


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    cfg = config_from_args(args)

    if args.no_supervisor:
        asyncio.run(run_app(cfg))
        return 0

    return run_with_supervisor(cfg, run_app, policy=RestartPolicy(max_restarts=args.max_restarts))


if __name__ == "__main__":
    raise SystemExit(main())
