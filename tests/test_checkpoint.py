import os

import pytest

from services.checkpoint import Checkpoint, CheckpointError, load_checkpoint, save_checkpoint


def test_record_updates_lists_and_counters():
    checkpoint = Checkpoint()
    checkpoint.record(0, "EV-1", "successful")
    checkpoint.record(1, "EV-2", "failed", "boom")
    checkpoint.record(2, "EV-3", "skipped")

    assert checkpoint.processed == ["EV-1"]
    assert checkpoint.skipped == ["EV-3"]
    assert checkpoint.failed == [{"code": "EV-2", "error": "boom"}]
    assert checkpoint.counters == {"processed": 3, "successful": 1, "failed": 1, "skipped": 1}
    assert checkpoint.last_processed_index == 2
    assert checkpoint.done_codes == {"EV-1", "EV-3"}


def test_start_index():
    checkpoint = Checkpoint()
    assert checkpoint.start_index() == 0
    assert checkpoint.start_index(skip=5) == 5
    checkpoint.last_processed_index = 39
    assert checkpoint.start_index() == 40
    assert checkpoint.start_index(skip=10) == 40
    assert checkpoint.start_index(skip=50) == 50


def test_save_and_load(tmp_path):
    path = str(tmp_path / "nested" / "checkpoint.json")
    checkpoint = Checkpoint()
    checkpoint.record(0, "EV-1", "successful")
    save_checkpoint(checkpoint, path)

    loaded = load_checkpoint(path)
    assert loaded.processed == ["EV-1"]
    assert loaded.last_processed_index == 0
    assert loaded.counters["successful"] == 1
    assert loaded.timestamp
    # Sin temporales huérfanos junto al checkpoint
    assert os.listdir(os.path.dirname(path)) == ["checkpoint.json"]


def test_from_dict_fills_missing_counters():
    checkpoint = Checkpoint.from_dict({"processedEventCodes": ["A"], "counters": {"processed": "1"}})
    assert checkpoint.counters == {"processed": 1, "successful": 0, "failed": 0, "skipped": 0}
    assert checkpoint.last_processed_index == -1


def test_invalid_checkpoint(tmp_path):
    path = tmp_path / "broken.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(CheckpointError):
        load_checkpoint(str(path))
    with pytest.raises(CheckpointError):
        load_checkpoint(str(tmp_path / "missing.json"))
