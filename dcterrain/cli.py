from __future__ import annotations

import argparse
import logging
import random

from dcterrain.config import (
    APP_VERSION,
    DEFAULT_CELLS_PER_AXIS,
    DEFAULT_COOLDOWN_SECONDS,
    DEFAULT_FLY_SPEED,
    DEFAULT_GLOBAL_TRI_CAP,
    DEFAULT_GLOBAL_VERT_CAP,
    DEFAULT_JOB_TRI_CAP,
    DEFAULT_JOB_VERT_CAP,
    DEFAULT_LOG_EVERY,
    DEFAULT_LOG_LEVEL,
    DEFAULT_MAX_WORKERS,
    DEFAULT_NOISE,
    DEFAULT_PRELOAD_EDGE,
    DEFAULT_RENDER_RADIUS,
    DEFAULT_SEED,
    DEFAULT_SIM_SPEED,
    DEFAULT_SIM_TICKS,
    DEFAULT_STALL_WARNING_SECONDS,
    DEFAULT_UPDATE_INTERVAL,
    DEFAULT_VOXEL_SIZE,
    DEFAULT_Y_CELLS,
    StreamSettings,
    TerrainConfig,
)


def _add_common(p: argparse.ArgumentParser) -> None:
    p.add_argument("--seed", default=str(DEFAULT_SEED), help=f"int seed or 'random' (default: {DEFAULT_SEED})")
    p.add_argument("--noise", choices=["fast", "simplex"], default=DEFAULT_NOISE, help="noise backend")
    p.add_argument("--voxel-size", type=float, default=DEFAULT_VOXEL_SIZE, help="base voxel size (world units)")
    p.add_argument("--cells", type=int, default=DEFAULT_CELLS_PER_AXIS, help="base cells per chunk axis")
    p.add_argument("--y-cells", type=int, default=DEFAULT_Y_CELLS, help="flat-terrain slab height in cells")
    p.add_argument("--radius", type=int, default=DEFAULT_RENDER_RADIUS, help="render radius in chunk rings")
    p.add_argument("--preload-edge", type=float, default=DEFAULT_PRELOAD_EDGE, help="preload neighbours within this distance of a chunk edge (0 = off)")
    p.add_argument("--workers", type=int, default=DEFAULT_MAX_WORKERS, help="extraction worker threads")
    p.add_argument("--cooldown", type=float, default=DEFAULT_COOLDOWN_SECONDS, help="seconds between LOD upgrades of one chunk")
    p.add_argument("--stall-warning", type=float, default=DEFAULT_STALL_WARNING_SECONDS, help="warn when a job runs longer than this (0 = off)")
    p.add_argument("--update-interval", type=float, default=DEFAULT_UPDATE_INTERVAL, help="seconds between scheduler ticks")
    p.add_argument("--tri-cap", type=float, default=DEFAULT_GLOBAL_TRI_CAP, help="global triangle cap")
    p.add_argument("--vert-cap", type=float, default=DEFAULT_GLOBAL_VERT_CAP, help="global vertex cap")
    p.add_argument("--job-tri-cap", type=float, default=DEFAULT_JOB_TRI_CAP, help="per-job triangle cap")
    p.add_argument("--job-vert-cap", type=float, default=DEFAULT_JOB_VERT_CAP, help="per-job vertex cap")
    p.add_argument("--log-level", default=DEFAULT_LOG_LEVEL, choices=["DEBUG", "INFO", "WARNING", "ERROR"], help="log level")
    p.add_argument("--debug", action="store_true", help="shorthand for --log-level DEBUG")


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="dcterrain", description=f"Budgeted LOD voxel terrain streaming v{APP_VERSION}")
    sub = p.add_subparsers(dest="command", required=True)

    sim = sub.add_parser("simulate", help="stream terrain headless along a straight path")
    _add_common(sim)
    sim.add_argument("--ticks", type=int, default=DEFAULT_SIM_TICKS, help="number of scheduler ticks")
    sim.add_argument("--speed", type=float, default=DEFAULT_SIM_SPEED, help="viewer speed along +Z (units/sec)")
    sim.add_argument("--log-every", type=int, default=DEFAULT_LOG_EVERY, help="log stats every N ticks")
    sim.add_argument("--realtime", action="store_true", help="sleep update-interval between ticks")

    view = sub.add_parser("view", help="open a window and fly over the streamed terrain")
    _add_common(view)
    view.add_argument("--speed", type=float, default=DEFAULT_FLY_SPEED, help="fly speed (units/sec)")
    view.add_argument("--wireframe", action="store_true", help="render wireframe (toggle with F)")
    view.add_argument("--hud", action="store_true", help="show scheduler HUD (toggle with H)")
    view.add_argument("--lod-colors", action="store_true", help="tint meshes by LOD (toggle with L)")
    return p.parse_args(argv)


def _seed(raw: str) -> int:
    if raw.lower() == "random":
        return random.randint(0, 2**31 - 1)
    return int(raw)


def _configure_logging(args: argparse.Namespace) -> None:
    level = logging.DEBUG if args.debug else getattr(logging, args.log_level)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def build_config(args: argparse.Namespace) -> tuple[StreamSettings, TerrainConfig]:
    settings = StreamSettings(
        voxel_size=float(args.voxel_size),
        cells_per_axis=int(args.cells),
        y_cells=int(args.y_cells),
        render_radius=int(args.radius),
        preload_edge=float(args.preload_edge),
        max_workers=int(args.workers),
        cooldown_seconds=float(args.cooldown),
        stall_warning_seconds=float(args.stall_warning),
    )
    terrain = TerrainConfig(
        global_tri_cap=float(args.tri_cap),
        global_vert_cap=float(args.vert_cap),
        job_tri_cap=float(args.job_tri_cap),
        job_vert_cap=float(args.job_vert_cap),
    )
    return settings, terrain


def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)
    _configure_logging(args)
    seed = _seed(str(args.seed))
    try:
        settings, terrain = build_config(args)
    except ValueError as e:
        raise SystemExit(f"dcterrain: invalid configuration: {e}") from e

    if args.command == "simulate":
        from dcterrain.headless import run_simulation

        run_simulation(
            seed=seed,
            noise_mode=str(args.noise),
            settings=settings,
            terrain=terrain,
            ticks=int(args.ticks),
            speed=float(args.speed),
            update_interval=float(args.update_interval),
            log_every=int(args.log_every),
            realtime=bool(args.realtime),
        )
    else:
        from dcterrain.app import run_app

        run_app(
            seed=seed,
            noise_mode=str(args.noise),
            settings=settings,
            terrain=terrain,
            update_interval=float(args.update_interval),
            wireframe=bool(args.wireframe),
            hud=bool(args.hud),
            lod_tint=bool(args.lod_colors),
            fly_speed=float(args.speed),
        )


if __name__ == "__main__":
    main()
