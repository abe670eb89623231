import numpy as np
import pandas as pd
import pytest

from fitcoach.data_processing.replay import EVENT_COLUMNS, format_snapshot, frames_from_dataframe, main, replay
from fitcoach.live_analyzer.pose_types import CorrectionReason, PoseJoint
from fitcoach.live_analyzer.rep_counter import RepCounterConfig, RepCounterSnapshot

from conftest import REP_DEPTHS, make_frame


def frames_to_dataframe(frames, with_conf=True):
    rows = []
    for f in frames:
        row = {"timestamp": f.timestamp}
        for joint, p in f.landmarks.items():
            row[f"{joint.value}_x"], row[f"{joint.value}_y"] = p.position
            if with_conf:
                row[f"{joint.value}_conf"] = p.confidence
        rows.append(row)
    return pd.DataFrame(rows)


@pytest.fixture
def rep_df():
    # shuffled on purpose: replay sorts by timestamp
    return frames_to_dataframe([make_frame(t, d) for t, d in REP_DEPTHS]).sample(frac=1.0, random_state=3)


def test_frames_from_dataframe_round_trip(rep_df):
    frames = list(frames_from_dataframe(rep_df))
    assert [f.timestamp for f in frames] == [t for t, _ in REP_DEPTHS]
    assert frames[1] == make_frame(0.1, 0.3)


def test_missing_cells_drop_joints_and_conf_defaults_to_one():
    df = frames_to_dataframe([make_frame(0.0)], with_conf=False)
    df.loc[0, "left_hip_x"] = np.nan
    frame = next(frames_from_dataframe(df))

    assert PoseJoint.LEFT_HIP not in frame.landmarks
    assert frame.point(PoseJoint.RIGHT_HIP).confidence == 1.0


def test_missing_timestamp_column():
    with pytest.raises(ValueError):
        list(frames_from_dataframe(pd.DataFrame({"left_hip_x": [0.5]})))


def test_replay_emits_phase_changes_and_cues(rep_df):
    events, snapshot = replay(rep_df)

    assert list(events.columns) == EVENT_COLUMNS
    assert list(events["phase"]) == ["idle", "descending", "ascending", "rep_completed"]
    assert list(events["cue"]) == ["", "", "", "positive"]
    assert events["repetition_count"].iloc[-1] == 1
    assert snapshot.repetition_count == 1


def test_replay_respects_config(rep_df):
    events, snapshot = replay(rep_df, RepCounterConfig(descent_threshold=0.5))
    assert list(events["phase"]) == ["idle"]
    assert snapshot.repetition_count == 0


def test_format_snapshot():
    lines = format_snapshot(RepCounterSnapshot(
        repetition_count=2,
        tempo_samples=(1.0, 2.0),
        correction_counts={CorrectionReason.LOW_CONFIDENCE: 1, CorrectionReason.INSUFFICIENT_DEPTH: 3},
    ))
    assert lines[0].endswith("2")
    assert "mean=1.50" in lines[1]
    assert lines[2].endswith("insufficient_depth x3")
    assert format_snapshot(RepCounterSnapshot())[1].endswith("n/a")


def test_main_writes_events(tmp_path, rep_df, capsys):
    src = tmp_path / "recording.csv"
    out = tmp_path / "out" / "events.csv"
    rep_df.to_csv(src, index=False)

    assert main([str(src), "--out", str(out)]) == 0

    printed = capsys.readouterr().out
    assert "Replay Summary" in printed
    assert "cue=positive" in printed
    written = pd.read_csv(out)
    assert list(written.columns) == EVENT_COLUMNS
    assert len(written) == 4


def test_main_missing_csv(tmp_path):
    with pytest.raises(SystemExit):
        main([str(tmp_path / "nope.csv")])
