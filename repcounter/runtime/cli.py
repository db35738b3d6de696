# repcounter/runtime/cli.py
from __future__ import annotations
import argparse
import json
import logging
import sys
import time
from pathlib import Path
from typing import Iterator, List, Optional

from repcounter.common.settings import load_settings
from repcounter.counter.detector import ConfigError, Phase, PhaseCounter, RepConfig
from repcounter.counter.pose_core import snapshot_from_dict

log = logging.getLogger(__name__)


def _config(args: argparse.Namespace, base: RepConfig) -> RepConfig:
    cfg = RepConfig.preset(args.preset) if args.preset else base
    return cfg.with_overrides(
        down_threshold=args.down,
        up_threshold=args.up,
        min_stable_frames=args.frames,
    )


def iter_poses(path: Path) -> Iterator[dict]:
    """One JSON object per line: either {joint: {...}} or {"landmarks": {joint: {...}}}."""
    with path.open("r", encoding="utf-8") as fh:
        for lineno, line in enumerate(fh, 1):
            if not line.strip():
                continue
            try:
                obj = json.loads(line)
            except json.JSONDecodeError as e:
                # treat as a frame with nothing usable in it
                log.warning("%s:%d: bad JSON (%s)", path, lineno, e.msg)
                yield {}
                continue
            landmarks = obj.get("landmarks", obj) if isinstance(obj, dict) else None
            yield landmarks if isinstance(landmarks, dict) else {}


def replay(path: Path, cfg: RepConfig) -> PhaseCounter:
    counter = PhaseCounter(cfg, debug_cb=lambda ev: log.debug("%s", ev))
    for landmarks in iter_poses(path):
        counter.process(snapshot_from_dict(landmarks))
    return counter


def _cmd_replay(args: argparse.Namespace, cfg: RepConfig) -> int:
    path = Path(args.file)
    if not path.exists():
        print(f"no such file: {path}", file=sys.stderr)
        return 2
    counter = replay(path, cfg)
    print(json.dumps({
        "count": counter.count,
        "phase": counter.phase.value,
        "feedback": counter.feedback.value,
    }), flush=True)
    return 0


def _cmd_live(args: argparse.Namespace, cfg: RepConfig, camera_index: int) -> int:
    from repcounter.counter.pipeline import PosePipeline

    errors: List[str] = []

    def on_rep(count: int):
        print(f"reps: {count}", flush=True)

    def on_phase(phase: Phase):
        print(f"phase: {phase.label}", flush=True)

    pipe = PosePipeline(
        cfg,
        on_rep=on_rep,
        on_phase=on_phase,
        show_window=args.show,
        on_error=errors.append,
        camera_index=camera_index if args.camera is None else args.camera,
    )
    print("Counting reps. Press Ctrl+C to exit.", flush=True)
    pipe.start()
    try:
        while pipe.is_alive():
            time.sleep(0.2)
    except KeyboardInterrupt:
        print("\nExiting…", flush=True)
    finally:
        pipe.stop()
        pipe.join(timeout=2.0)
    print(f"total reps: {pipe.detector.count}", flush=True)
    return 1 if errors else 0


def _cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("repcounter.runtime.server:app", host=args.host, port=args.port)
    return 0


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="repcounter", description="Pose-based repetition counter")
    sub = ap.add_subparsers(dest="command", required=True)

    def tuning(p: argparse.ArgumentParser):
        p.add_argument("--preset", default=None, help="Tuning preset (standard, strict)")
        p.add_argument("--down", type=float, default=None, help="DOWN threshold (deg)")
        p.add_argument("--up", type=float, default=None, help="UP threshold (deg)")
        p.add_argument("--frames", type=int, default=None, help="Frames needed to confirm a phase")

    live = sub.add_parser("live", help="Count reps from the webcam")
    tuning(live)
    live.add_argument("--camera", type=int, default=None, help="Camera index")
    live.add_argument("--show", action="store_true", help="Show preview window")

    rp = sub.add_parser("replay", help="Count reps from a JSONL file of poses")
    tuning(rp)
    rp.add_argument("file", help="JSONL file, one pose per line")

    srv = sub.add_parser("serve", help="Run the websocket/HTTP server")
    srv.add_argument("--host", default="127.0.0.1")
    srv.add_argument("--port", type=int, default=8000)
    return ap


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = load_settings()
    except ConfigError as e:
        print(f"config error: {e}", file=sys.stderr)
        return 2
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "serve":
        return _cmd_serve(args)
    try:
        cfg = _config(args, settings.rep)
    except ConfigError as e:
        print(f"config error: {e}", file=sys.stderr)
        return 2
    if args.command == "replay":
        return _cmd_replay(args, cfg)
    return _cmd_live(args, cfg, settings.camera_index)


if __name__ == "__main__":
    raise SystemExit(main())
