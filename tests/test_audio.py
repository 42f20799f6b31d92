import asyncio

import numpy as np
import pytest

from verbalist.audio import AmplitudeMeter, FileCapture


def test_amplitude_meter_normalises_and_smooths():
    meter = AmplitudeMeter(history_size=3)

    assert meter.update(np.zeros(512, dtype=np.float32)) == 0.0
    assert meter.update(np.ones((512, 1), dtype=np.float32)) == pytest.approx(0.7)
    meter.update(np.ones(512, dtype=np.float32))
    meter.update(np.ones(512, dtype=np.float32))

    assert len(meter.samples) == 3
    assert all(0.0 <= sample <= 1.0 for sample in meter.samples)

    meter.reset()
    assert meter.samples == []


def test_file_capture_reads_recording(tmp_path):
    path = tmp_path / "memo.wav"
    path.write_bytes(b"RIFF-data")
    capture = FileCapture(path)

    assert asyncio.run(capture.request_permission()) is True
    capture.start()
    capture.stop()

    assert capture.get_recorded_blob() == b"RIFF-data"
    assert capture.samples == []


def test_file_capture_without_file(tmp_path):
    capture = FileCapture(tmp_path / "missing.wav")

    assert asyncio.run(capture.request_permission()) is False
    capture.start()
    capture.stop()
    assert capture.get_recorded_blob() is None


def test_file_capture_empty_file(tmp_path):
    path = tmp_path / "empty.wav"
    path.write_bytes(b"")
    capture = FileCapture(path)

    capture.start()
    capture.stop()
    assert capture.get_recorded_blob() is None
