#replay.py
"""
Replay a recorded landmark CSV through the rep counter.

Expected columns:
  timestamp, then <joint>_x, <joint>_y, <joint>_conf for each joint
  (left_hip, right_hip, left_knee, right_knee, left_ankle, right_ankle, ...).
  Empty cells mean the joint was not detected in that frame.

Usage:
  python -m fitcoach.data_processing.replay recording.csv
  python -m fitcoach.data_processing.replay recording.csv --out events.csv \
      --descent 0.12 --release 0.04 --min-confidence 0.45
"""

import argparse
import logging
from pathlib import Path
from typing import Iterator, List, Optional

import numpy as np
import pandas as pd

from fitcoach.common.io_utils import read_csv, write_csv
from fitcoach.common.logging_utils import setup_logging
from fitcoach.live_analyzer.pose_types import PoseFrame, PoseJoint, PosePoint
from fitcoach.live_analyzer.rep_counter import RepCounter, RepCounterConfig, RepCounterSnapshot

logger = logging.getLogger(__name__)

TIME_COL = "timestamp"
EVENT_COLUMNS = ["timestamp", "phase", "repetition_count", "cue", "confidence"]


def parse_args(argv: Optional[List[str]] = None):
    defaults = RepCounterConfig()
    p = argparse.ArgumentParser(
        description="Replay recorded pose landmarks through the squat rep counter",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    p.add_argument("csv", type=Path, help="Landmark CSV (timestamp + <joint>_x/_y/_conf columns)")
    p.add_argument("--out", type=Path, default=None, help="Optional CSV of per-event rows")
    p.add_argument("--descent", type=float, default=defaults.descent_threshold)
    p.add_argument("--release", type=float, default=defaults.release_threshold)
    p.add_argument("--min-confidence", type=float, default=defaults.min_confidence)
    p.add_argument("--verbose", action="store_true")
    return p.parse_args(argv)


def frames_from_dataframe(df: pd.DataFrame) -> Iterator[PoseFrame]:
    """One PoseFrame per row; joints with a missing coordinate are left out."""
    if TIME_COL not in df.columns:
        raise ValueError(f"missing '{TIME_COL}' column")
    joints = [j for j in PoseJoint if f"{j.value}_x" in df.columns and f"{j.value}_y" in df.columns]
    df = df.sort_values(TIME_COL).reset_index(drop=True)

    for values in df.to_dict("records"):
        landmarks = {}
        for joint in joints:
            x, y = values[f"{joint.value}_x"], values[f"{joint.value}_y"]
            if pd.isna(x) or pd.isna(y):
                continue
            conf = values.get(f"{joint.value}_conf", 1.0)
            conf = 1.0 if pd.isna(conf) else float(conf)
            landmarks[joint] = PosePoint((float(x), float(y)), conf)
        yield PoseFrame(timestamp=float(values[TIME_COL]), landmarks=landmarks)


def replay(df: pd.DataFrame, config: Optional[RepCounterConfig] = None):
    """
    Returns:
      events: DataFrame with one row per phase change or emitted cue
      snapshot: the counter's cumulative snapshot after the last frame
    """
    counter = RepCounter(config)
    rows = []
    last_kind = None
    for frame in frames_from_dataframe(df):
        result = counter.process(frame)
        if result.cue is None and result.phase.kind == last_kind:
            continue
        last_kind = result.phase.kind
        rows.append({
            "timestamp": frame.timestamp,
            "phase": result.phase.kind.value,
            "repetition_count": result.repetition_count,
            "cue": repr(result.cue) if result.cue is not None else "",
            "confidence": round(result.confidence, 3),
        })
    return pd.DataFrame(rows, columns=EVENT_COLUMNS), counter.snapshot()


def format_snapshot(snapshot: RepCounterSnapshot) -> List[str]:
    tempo = np.array(snapshot.tempo_samples, dtype=float)
    lines = [f"reps           : {snapshot.repetition_count}"]
    if tempo.size:
        lines.append(f"tempo (s)      : mean={tempo.mean():.2f} min={tempo.min():.2f} max={tempo.max():.2f}")
    else:
        lines.append("tempo (s)      : n/a")
    for reason, n in sorted(snapshot.correction_counts.items(), key=lambda kv: -kv[1]):
        lines.append(f"correction     : {reason.value} x{n}")
    return lines


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO)

    if not args.csv.exists():
        raise SystemExit(f"[ERROR] CSV not found: {args.csv}")

    config = RepCounterConfig(
        descent_threshold=args.descent,
        release_threshold=args.release,
        min_confidence=args.min_confidence,
    )
    df = read_csv(args.csv)
    logger.info("Replaying %d frames from %s", len(df), args.csv)

    events, snapshot = replay(df, config)
    for ev in events.itertuples(index=False):
        cue = f" cue={ev.cue}" if ev.cue else ""
        print(f"[{ev.timestamp:8.3f}] {ev.phase:<22} reps={ev.repetition_count}{cue}")

    print("========== Replay Summary ==========")
    for line in format_snapshot(snapshot):
        print(line)
    print("====================================")

    if args.out is not None:
        write_csv(events, args.out, mode="w", header=True)
        print(f"[SUCCESS] Events written: {args.out} (rows={len(events)})")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
