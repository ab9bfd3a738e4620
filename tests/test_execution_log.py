import threading
from datetime import datetime, timedelta, timezone

import pytest

from execution_log import (
    CSV_HEADER,
    ExecutionLog,
    ExecutionSample,
    percentile,
    read_samples_csv,
    summarize_samples,
    write_samples_csv,
)


def _sample(seconds, offset=0):
    ts = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc) + timedelta(seconds=offset)
    return ExecutionSample(timestamp=ts, response_time_s=seconds)


def test_csv_file_has_header_and_one_row_per_sample(csv_path):
    samples = [_sample(0.25, 0), _sample(1.5, 1), _sample(0.0, 2)]

    assert write_samples_csv(csv_path, samples) == 3

    lines = csv_path.read_text(encoding="utf-8").splitlines()
    assert lines[0] == ",".join(CSV_HEADER)
    assert len(lines) == 4
    assert lines[1].split(",")[1] == "0.250000"


def test_csv_read_back_preserves_count_and_durations(csv_path):
    samples = [_sample(0.123456, i) for i in range(5)]
    write_samples_csv(csv_path, samples)

    loaded = read_samples_csv(csv_path)

    assert len(loaded) == 5
    assert all(s.response_time_s >= 0 for s in loaded)
    assert loaded[0].response_time_s == pytest.approx(0.123456)
    assert loaded[2].timestamp == samples[2].timestamp


def test_csv_read_rejects_foreign_header(csv_path):
    csv_path.write_text("when,latency\n", encoding="utf-8")

    with pytest.raises(ValueError):
        read_samples_csv(csv_path)


def test_csv_write_overwrites_previous_file(csv_path):
    write_samples_csv(csv_path, [_sample(1.0, i) for i in range(10)])
    write_samples_csv(csv_path, [_sample(1.0)])

    assert len(read_samples_csv(csv_path)) == 1


def test_concurrent_appends_are_all_persisted(csv_path):
    log = ExecutionLog()
    workers, per_worker = 8, 250

    def writer(worker_id):
        for i in range(per_worker):
            log.append(_sample(0.001 * worker_id, i))

    threads = [threading.Thread(target=writer, args=(w,)) for w in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert log.close_and_persist(csv_path)
    assert len(read_samples_csv(csv_path)) == workers * per_worker


def test_final_flush_happens_once_and_closes_log(csv_path):
    log = ExecutionLog()
    log.append(_sample(0.5))

    assert log.close_and_persist(csv_path) is True
    assert log.closed
    assert log.append(_sample(0.7)) is False
    csv_path.unlink()
    assert log.close_and_persist(csv_path) is False
    assert not csv_path.exists()
    assert len(log) == 1


def test_periodic_persist_keeps_log_open(csv_path):
    log = ExecutionLog()
    log.append(_sample(0.5))

    assert log.persist(csv_path)
    assert log.append(_sample(0.6))
    assert not log.closed


def test_persist_failure_is_reported_not_raised(tmp_path):
    log = ExecutionLog()
    log.append(_sample(0.5))

    assert log.persist(tmp_path / "missing-dir" / "out.csv") is False


def test_percentile_interpolates():
    assert percentile([], 0.5) == 0.0
    assert percentile([3.0], 0.95) == 3.0
    assert percentile([1.0, 2.0, 3.0, 4.0], 0.5) == pytest.approx(2.5)


def test_summarize_samples():
    summary = summarize_samples([_sample(1.0), _sample(3.0)], elapsed_s=4.0)

    assert summary["completed"] == 2
    assert summary["ops_per_sec"] == pytest.approx(0.5)
    assert summary["lat_mean"] == pytest.approx(2.0)
    assert summary["lat_max"] == 3.0


def test_summarize_empty_run():
    summary = summarize_samples([], elapsed_s=0.0)

    assert summary["completed"] == 0
    assert summary["ops_per_sec"] == 0.0


def test_csv_keeps_sub_second_timestamps_apart(csv_path):
    base = datetime(2025, 3, 1, 12, 0, 0, 250000, tzinfo=timezone.utc)
    samples = [
        ExecutionSample(timestamp=base, response_time_s=0.1),
        ExecutionSample(timestamp=base + timedelta(microseconds=500001), response_time_s=0.2),
    ]
    write_samples_csv(csv_path, samples)

    loaded = read_samples_csv(csv_path)

    assert [s.timestamp for s in loaded] == [s.timestamp for s in samples]
    assert loaded[0].timestamp != loaded[1].timestamp
