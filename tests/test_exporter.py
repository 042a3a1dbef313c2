import sys
import threading
from pathlib import Path

import numpy as np
import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from bodyexport.errors import ErrorKind, ExportIOError, InvalidInputError
from bodyexport.exporter import BodyCsvExporter, ExportConfig, ExportStream, header_columns
from bodyexport.joints import JOINT_COUNT, Body, ConfidenceLevel, JointId
from bodyexport.reader import load_export, validate_export
from bodyexport.sources import template_positions


def _random_body(body_id: int, seed: int, confidence: ConfidenceLevel = ConfidenceLevel.HIGH) -> Body:
    rng = np.random.default_rng(seed)
    positions = rng.uniform(-2000.0, 2000.0, size=(JOINT_COUNT, 3)).astype(np.float32).astype(np.float64)
    return Body.from_arrays(body_id, positions, [confidence] * JOINT_COUNT)


def _arm_forward_body(body_id: int = 1) -> Body:
    pts = template_positions()
    pts[int(JointId.ELBOW_RIGHT)] = pts[int(JointId.SHOULDER_RIGHT)] + np.array([0.0, 0.0, -280.0])
    return Body.from_arrays(body_id, pts)


def _lines(path: Path) -> list[str]:
    return path.read_text(encoding="utf-8").splitlines()


class _FlakyHandle:
    """File handle wrapper whose writes or flushes can be made to fail like a full disk."""

    def __init__(self, inner):
        self._inner = inner
        self.fail = False
        self.fail_flush = False

    @property
    def closed(self) -> bool:
        return self._inner.closed

    def seek(self, offset: int, whence: int = 0) -> int:
        return self._inner.seek(offset, whence)

    def fileno(self) -> int:
        return self._inner.fileno()

    def write(self, data) -> int:
        if self.fail:
            raise OSError(28, "No space left on device")
        return self._inner.write(data)

    def flush(self) -> None:
        if self.fail_flush:
            raise OSError(28, "No space left on device")
        self._inner.flush()

    def close(self) -> None:
        self._inner.close()


def test_header_columns_layout() -> None:
    cols = header_columns(ExportConfig())
    assert cols[:2] == ["BodyID", "Time"]
    assert cols[2:6] == ["PELVIS_X", "PELVIS_Y", "PELVIS_Z", "PELVIS_CONFIDENCE"]
    assert cols[-1] == "EAR_RIGHT_CONFIDENCE"
    assert len(cols) == 2 + 4 * JOINT_COUNT

    cols = header_columns(ExportConfig(include_angle=True, time_label="FrameCount"))
    assert cols[1] == "FrameCount"
    assert cols[-1] == "ANGLE"
    assert len(cols) == 3 + 4 * JOINT_COUNT


def test_invalid_time_label_rejected() -> None:
    with pytest.raises(ValueError):
        ExportConfig(time_label="Timestamp")


def test_first_export_writes_header_once(tmp_path) -> None:
    path = tmp_path / "joints.csv"
    bodies = [_random_body(i, seed=i) for i in range(3)]

    with ExportStream(path) as stream:
        exporter = BodyCsvExporter(stream)
        assert exporter.export_batch(bodies, 1000) == 3
        lines = _lines(path)
        assert lines[0] == ",".join(header_columns(ExportConfig()))
        assert len(lines) == 4

        assert exporter.export_batch(bodies[:2], 2000) == 2
        assert exporter.export_one(bodies[2], 3000) == 1

    lines = _lines(path)
    assert len(lines) == 1 + 3 + 2 + 1
    assert sum(1 for line in lines if line.startswith("BodyID")) == 1


def test_reopen_existing_file_appends_without_header(tmp_path) -> None:
    path = tmp_path / "joints.csv"
    with ExportStream(path) as stream:
        BodyCsvExporter(stream).export_one(_random_body(1, seed=1), 10)
    with ExportStream(path) as stream:
        BodyCsvExporter(stream).export_one(_random_body(2, seed=2), 20)

    table = load_export(str(path))
    assert table.header_count == 1
    assert [r.body_id for r in table.rows] == [1, 2]
    assert [r.time for r in table.rows] == [10, 20]
    assert validate_export(str(path))["valid"]


def test_empty_batch_is_noop(tmp_path) -> None:
    path = tmp_path / "joints.csv"
    with ExportStream(path) as stream:
        exporter = BodyCsvExporter(stream)
        assert exporter.export_batch([], 123) == 0
        assert path.stat().st_size == 0

        exporter.export_one(_random_body(1, seed=1), 1)
        size = path.stat().st_size
        assert exporter.export_batch([], 456) == 0
        assert path.stat().st_size == size


def test_row_serializes_positions_and_confidence_ordinals(tmp_path) -> None:
    path = tmp_path / "joints.csv"
    body = _random_body(7, seed=3, confidence=ConfidenceLevel.MEDIUM)
    with ExportStream(path) as stream:
        BodyCsvExporter(stream).export_one(body, 987654321)

    fields = _lines(path)[1].split(",")
    assert fields[0] == "7"
    assert fields[1] == "987654321"
    pelvis = body.joint(JointId.PELVIS)
    assert [float(v) for v in fields[2:5]] == list(pelvis.position)
    assert fields[5] == "2"


def test_none_confidence_still_writes_all_fields(tmp_path) -> None:
    path = tmp_path / "joints.csv"
    body = _random_body(4, seed=9, confidence=ConfidenceLevel.NONE)
    with ExportStream(path) as stream:
        BodyCsvExporter(stream).export_batch([body], 5)

    table = load_export(str(path))
    row = table.rows[0]
    assert np.array_equal(row.positions, body.positions_array())
    assert row.confidences == [ConfidenceLevel.NONE] * JOINT_COUNT
    assert len(_lines(path)[1].split(",")) == 2 + 4 * JOINT_COUNT


def test_angle_column(tmp_path) -> None:
    path = tmp_path / "joints.csv"
    with ExportStream(path) as stream:
        exporter = BodyCsvExporter(stream, ExportConfig(include_angle=True))
        exporter.export_batch([_arm_forward_body(1), _arm_forward_body(2)], 77)

    table = load_export(str(path))
    assert table.has_angle
    assert [r.angle for r in table.rows] == [pytest.approx(90.0), pytest.approx(90.0)]


def test_undefined_angle_aborts_whole_batch(tmp_path) -> None:
    pts = template_positions()
    pts[int(JointId.ELBOW_RIGHT)] = pts[int(JointId.SHOULDER_RIGHT)]
    degenerate = Body.from_arrays(9, pts)

    path = tmp_path / "joints.csv"
    with ExportStream(path) as stream:
        exporter = BodyCsvExporter(stream, ExportConfig(include_angle=True))
        with pytest.raises(InvalidInputError) as exc:
            exporter.export_batch([_arm_forward_body(1), degenerate], 1)
        assert exc.value.kind is ErrorKind.INVALID_INPUT
        assert path.stat().st_size == 0

        # Stream stays usable after a failed frame
        assert exporter.export_batch([_arm_forward_body(1)], 2) == 1


def test_skip_invalid_angle_writes_empty_field(tmp_path) -> None:
    pts = template_positions()
    pts[int(JointId.ELBOW_RIGHT)] = pts[int(JointId.SHOULDER_RIGHT)]
    degenerate = Body.from_arrays(9, pts)

    path = tmp_path / "joints.csv"
    with ExportStream(path) as stream:
        config = ExportConfig(include_angle=True, skip_invalid_angle=True)
        BodyCsvExporter(stream, config).export_batch([degenerate, _arm_forward_body(1)], 1)

    table = load_export(str(path))
    assert table.rows[0].angle is None
    assert table.rows[1].angle == pytest.approx(90.0)
    assert _lines(path)[1].endswith(",")


def test_low_confidence_gate_leaves_angle_empty(tmp_path) -> None:
    confidences = [ConfidenceLevel.HIGH] * JOINT_COUNT
    confidences[int(JointId.ELBOW_RIGHT)] = ConfidenceLevel.LOW
    pts = template_positions()
    pts[int(JointId.ELBOW_RIGHT)] = pts[int(JointId.SHOULDER_RIGHT)] + np.array([0.0, 0.0, -280.0])
    body = Body.from_arrays(3, pts, confidences)

    path = tmp_path / "joints.csv"
    with ExportStream(path) as stream:
        config = ExportConfig(include_angle=True, angle_min_confidence=ConfidenceLevel.MEDIUM)
        BodyCsvExporter(stream, config).export_one(body, 1)

    assert load_export(str(path)).rows[0].angle is None


def test_closed_stream_raises_io_error(tmp_path) -> None:
    path = tmp_path / "joints.csv"
    stream = ExportStream(path)
    exporter = BodyCsvExporter(stream)
    with pytest.raises(ExportIOError) as exc:
        exporter.export_one(_random_body(1, seed=1), 1)
    assert exc.value.kind is ErrorKind.IO

    with stream:
        exporter.export_one(_random_body(1, seed=1), 1)
    assert not stream.is_open
    with pytest.raises(ExportIOError):
        exporter.export_batch([_random_body(2, seed=2)], 2)


def test_open_failure_raises_io_error(tmp_path) -> None:
    blocker = tmp_path / "not_a_dir"
    blocker.write_text("x", encoding="utf-8")
    with pytest.raises(ExportIOError):
        ExportStream(blocker / "joints.csv").open()


def test_write_failure_keeps_prior_rows_and_stream_open(tmp_path) -> None:
    path = tmp_path / "joints.csv"
    with ExportStream(path) as stream:
        exporter = BodyCsvExporter(stream)
        exporter.export_batch([_random_body(1, seed=1), _random_body(2, seed=2)], 1)

        flaky = _FlakyHandle(stream._handle)
        stream._handle = flaky
        flaky.fail = True
        with pytest.raises(ExportIOError) as exc:
            exporter.export_batch([_random_body(3, seed=3)], 2)
        assert "disk full" in str(exc.value)
        assert isinstance(exc.value.__cause__, OSError)
        assert stream.is_open

        flaky.fail = False
        exporter.export_batch([_random_body(4, seed=4)], 3)

    table = load_export(str(path))
    assert [r.body_id for r in table.rows] == [1, 2, 4]


def test_flush_failure_leaves_no_rows_of_the_failed_frame(tmp_path) -> None:
    path = tmp_path / "joints.csv"
    with ExportStream(path) as stream:
        exporter = BodyCsvExporter(stream)
        exporter.export_batch([_random_body(1, seed=1)], 1)

        flaky = _FlakyHandle(stream._handle)
        stream._handle = flaky
        flaky.fail_flush = True
        with pytest.raises(ExportIOError):
            exporter.export_batch([_random_body(2, seed=2)], 2)
        flaky.fail_flush = False

        exporter.export_batch([_random_body(3, seed=3)], 3)

    table = load_export(str(path))
    assert [r.body_id for r in table.rows] == [1, 3]
    assert [r.time for r in table.rows] == [1, 3]
    assert validate_export(str(path))["valid"]


def test_flush_failure_on_first_frame_leaves_empty_file(tmp_path) -> None:
    path = tmp_path / "joints.csv"
    with ExportStream(path) as stream:
        exporter = BodyCsvExporter(stream)
        flaky = _FlakyHandle(stream._handle)
        stream._handle = flaky
        flaky.fail_flush = True
        with pytest.raises(ExportIOError):
            exporter.export_batch([_random_body(1, seed=1)], 1)
        assert path.stat().st_size == 0

        flaky.fail_flush = False
        exporter.export_batch([_random_body(2, seed=2)], 2)

    assert _lines(path)[0].startswith("BodyID,Time,")
    assert validate_export(str(path))["stats"]["total_rows"] == 1


def test_concurrent_batches_do_not_interleave(tmp_path) -> None:
    path = tmp_path / "joints.csv"
    batches = {
        1000: [_random_body(i, seed=i) for i in range(10)],
        2000: [_random_body(100 + i, seed=100 + i) for i in range(10)],
    }
    barrier = threading.Barrier(len(batches))
    errors: list[BaseException] = []

    with ExportStream(path) as stream:
        exporter = BodyCsvExporter(stream, ExportConfig())

        def _worker(timestamp: int) -> None:
            try:
                barrier.wait(timeout=5.0)
                exporter.export_batch(batches[timestamp], timestamp)
            except BaseException as e:  # surfaced by the assertion below
                errors.append(e)

        threads = [threading.Thread(target=_worker, args=(ts,)) for ts in batches]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10.0)

    assert not errors
    table = load_export(str(path))
    assert table.header_count == 1
    assert len(table.rows) == 20

    expected = {
        body.body_id: (ts, body)
        for ts, bodies in batches.items()
        for body in bodies
    }
    for row in table.rows:
        ts, body = expected.pop(row.body_id)
        assert row.time == ts
        assert np.array_equal(row.positions, body.positions_array())
        assert row.confidences == [j.confidence for j in body.joints]
    assert not expected

    # Each call's rows are contiguous
    times = [r.time for r in table.rows]
    assert times == sorted(times) or times == sorted(times, reverse=True)


def test_many_writers_produce_complete_rows(tmp_path) -> None:
    path = tmp_path / "joints.csv"
    threads_n, calls_n, per_call = 4, 25, 3

    with ExportStream(path) as stream:
        exporter = BodyCsvExporter(stream, ExportConfig(include_angle=True))

        def _worker(worker_id: int) -> None:
            for call in range(calls_n):
                ts = worker_id * 1_000_000 + call
                exporter.export_batch(
                    [_arm_forward_body(worker_id * 1000 + call * 10 + k) for k in range(per_call)],
                    ts,
                )

        threads = [threading.Thread(target=_worker, args=(w,)) for w in range(threads_n)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30.0)

    table = load_export(str(path))
    assert len(table.rows) == threads_n * calls_n * per_call
    rows = table.rows
    for start in range(0, len(rows), per_call):
        group = rows[start:start + per_call]
        assert len(set(r.time for r in group)) == 1
        assert all(r.body_id // 1000 == group[0].time // 1_000_000 for r in group)
