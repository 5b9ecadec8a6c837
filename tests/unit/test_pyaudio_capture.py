"""Unit tests for PyAudioCapture."""

import time

import pytest

pytest.importorskip("pyaudio")

from livescribe.audio.capture import PyAudioCapture  # noqa: E402


def slow_read(*args, **kwargs):
    time.sleep(0.005)
    return b'\x00\x10' * 1600


@pytest.fixture
def capture(mock_pyaudio, audio_publisher):
    mock_pyaudio['stream'].read.side_effect = slow_read
    capture = PyAudioCapture(audio_publisher)
    yield capture
    capture.dispose()


@pytest.mark.unit
class TestPyAudioCapture:
    """Test cases for PyAudioCapture."""

    def test_initialization(self, audio_publisher):
        capture = PyAudioCapture(audio_publisher)

        assert capture.sample_rate == 16000
        assert capture.chunk_size == 1600
        assert capture.channels == 1
        assert capture.is_recording is False
        assert capture.total_chunks == 0

    def test_has_permission(self, capture):
        assert capture.has_permission() is True

    def test_no_input_device(self, capture, mock_pyaudio):
        mock_pyaudio['instance'].get_default_input_device_info.side_effect = OSError("No Default Input Device Available")
        assert capture.has_permission() is False

    def test_permission_check_error_is_published(self, capture, mock_pyaudio, recorder, audio_publisher):
        recorder.listen_audio(audio_publisher)
        mock_pyaudio['instance'].get_default_input_device_info.side_effect = RuntimeError("boom")

        assert capture.has_permission() is False
        assert recorder.messages == ["Permission check failed: boom"]

    def test_start_publishes_chunks(self, capture, mock_pyaudio, recorder, audio_publisher):
        recorder.listen_audio(audio_publisher)

        assert capture.start() is True
        assert capture.is_recording is True
        assert capture.recording_thread.daemon is True

        deadline = time.time() + 2.0
        while len(recorder.chunks) < 3 and time.time() < deadline:
            time.sleep(0.01)

        assert capture.stop() is None
        assert capture.is_recording is False

        assert len(recorder.chunks) >= 3
        sequence = [c.sequence_number for c in recorder.chunks]
        assert sequence == sorted(sequence)
        assert all(len(c.data) == 3200 for c in recorder.chunks)
        assert recorder.chunks[0].duration_ms == 100
        assert capture.recorded_ms == 100 * len(recorder.chunks)
        assert recorder.amplitudes[0] == pytest.approx(4096 / 32768)
        assert recorder.amplitudes[-1] == 0.0

        mock_pyaudio['instance'].open.assert_called_once()
        assert mock_pyaudio['instance'].open.call_args.kwargs['rate'] == 16000
        mock_pyaudio['stream'].stop_stream.assert_called_once()
        mock_pyaudio['stream'].close.assert_called_once()

    def test_start_when_recording_is_noop(self, capture, mock_pyaudio):
        capture.start()
        assert capture.start() is True
        mock_pyaudio['instance'].open.assert_called_once()

    def test_open_failure(self, capture, mock_pyaudio, recorder, audio_publisher):
        recorder.listen_audio(audio_publisher)
        mock_pyaudio['instance'].open.side_effect = OSError("device busy")

        assert capture.start() is False
        assert capture.is_recording is False
        assert recorder.messages == ["Failed to start recording: device busy"]

    def test_stream_error_stops_capture(self, capture, mock_pyaudio, recorder, audio_publisher):
        recorder.listen_audio(audio_publisher)
        mock_pyaudio['stream'].read.side_effect = OSError("Input overflowed")

        capture.start()
        deadline = time.time() + 2.0
        while capture.is_recording and time.time() < deadline:
            time.sleep(0.01)

        assert capture.is_recording is False
        assert recorder.messages == ["Audio stream error: Input overflowed"]
        assert recorder.amplitudes[-1] == 0.0

    def test_stop_when_idle(self, capture):
        assert capture.stop() is None

    def test_dispose_terminates_pyaudio(self, capture, mock_pyaudio):
        capture.has_permission()
        capture.dispose()
        mock_pyaudio['instance'].terminate.assert_called_once()
        assert capture.pyaudio_instance is None
