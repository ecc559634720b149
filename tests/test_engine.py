"""Integration tests for the analysis engine, run lifecycle and API."""

import json

import numpy as np
import pytest
import soundfile as sf

from trackdiff.analysis.cancel import CancellationToken
from trackdiff.analysis.engine import AnalysisEngine, AnalysisOutcome, AnalysisRun
from trackdiff.analysis.errors import AnalysisCancelled, DecodeError, RunStateError, SourceError
from trackdiff.analysis.models import (
    ComparisonReport,
    FrameFeatures,
    Key,
    LocalAnalysisResult,
    LocalSummary,
    RunState,
)
from trackdiff.audio.loader import decode, decoded, fetch_audio, source_suffix
from tests.conftest import generate_click_track, make_buffer, wav_bytes


def _assert_tempo_near(bpm: float, target: float = 120):
    # Allow octave errors
    assert any(abs(bpm - t) / t < 0.1 for t in (target / 2, target, target * 2)), bpm


# ---------------------------------------------------------------------------
# Run state machine
# ---------------------------------------------------------------------------

def test_run_lifecycle_finalizes_once():
    calls = []
    run = AnalysisRun(on_complete=calls.append)
    assert run.state is RunState.IDLE

    run.start()
    run.push(FrameFeatures(index=0, tempo=120.0, loudness=-6.0, rms=0.5))
    outcome = run.end_of_stream()

    assert run.state is RunState.FINALIZED
    assert outcome.ok
    assert outcome.result.bpm == 120
    assert run.end_of_stream() is None
    assert calls == [outcome]


def test_push_outside_analyzing_raises():
    run = AnalysisRun()
    with pytest.raises(RunStateError):
        run.push(FrameFeatures(index=0))

    run.start()
    run.end_of_stream()
    with pytest.raises(RunStateError):
        run.push(FrameFeatures(index=1))


def test_terminal_states_have_no_transitions():
    run = AnalysisRun()
    run.start()
    run.abort(DecodeError("bad"))

    with pytest.raises(RunStateError):
        run.start()
    assert run.end_of_stream() is None
    assert run.abort(DecodeError("again")) is None
    assert run.state is RunState.ABORTED


def test_end_of_stream_before_start_raises():
    with pytest.raises(RunStateError):
        AnalysisRun().end_of_stream()


def test_cancelled_run_never_completes():
    calls = []
    token = CancellationToken()
    run = AnalysisRun(on_complete=calls.append, token=token)
    run.start()
    run.push(FrameFeatures(index=0, rms=0.2))
    token.cancel()

    outcome = run.end_of_stream()
    assert outcome.state is RunState.ABORTED
    assert isinstance(outcome.error, AnalysisCancelled)
    assert calls == []


def test_aborted_outcome_cannot_be_reconciled():
    outcome = AnalysisOutcome(state=RunState.ABORTED, error=DecodeError("bad"))
    with pytest.raises(RunStateError):
        outcome.reconcile()


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

def test_analyze_buffer_returns_result(click_120):
    outcome = AnalysisEngine().analyze_buffer(make_buffer(click_120))

    assert outcome.ok
    result = outcome.result
    assert isinstance(result, LocalAnalysisResult)
    _assert_tempo_near(result.bpm)
    assert 0 < result.rms <= 1
    assert result.loudness < 0
    assert result.key is Key.UNKNOWN


def test_analyze_bytes_calls_completion_once(click_120_wav):
    calls = []
    outcome = AnalysisEngine().analyze_bytes(click_120_wav, on_complete=calls.append, suffix=".wav")

    assert outcome.ok
    assert calls == [outcome]
    _assert_tempo_near(outcome.result.bpm)


def test_analyze_bytes_stereo(click_120):
    stereo = np.stack([click_120, click_120 * 0.5], axis=1)
    outcome = AnalysisEngine().analyze_bytes(wav_bytes(stereo), suffix=".wav")
    assert outcome.ok
    assert outcome.result.rms > 0


def test_silent_audio_gives_zero_bpm():
    silence = np.zeros(22050 * 6, dtype=np.float32)
    outcome = AnalysisEngine().analyze_buffer(make_buffer(silence))

    assert outcome.ok
    assert outcome.result.bpm == 0
    assert outcome.result.loudness == 0
    assert outcome.result.rms == 0


def test_decode_error_is_reported_once():
    calls = []
    outcome = AnalysisEngine().analyze_bytes(b"definitely not audio", on_complete=calls.append, suffix=".wav")

    assert outcome.state is RunState.ABORTED
    assert isinstance(outcome.error, DecodeError)
    assert outcome.result is None
    assert calls == [outcome]


def test_empty_bytes_are_a_decode_error():
    outcome = AnalysisEngine().analyze_bytes(b"")
    assert isinstance(outcome.error, DecodeError)


def test_cancelled_before_start_emits_nothing(click_120_wav):
    calls = []
    token = CancellationToken()
    token.cancel()

    outcome = AnalysisEngine().analyze_bytes(click_120_wav, token=token, on_complete=calls.append)

    assert outcome.state is RunState.ABORTED
    assert isinstance(outcome.error, AnalysisCancelled)
    assert calls == []


def test_cancel_mid_run_releases_decoder(monkeypatch, click_120_wav):
    import trackdiff.analysis.engine as engine_module

    token = CancellationToken()
    buffers = []
    real_decoded = engine_module.decoded

    def _tracking_decoded(*args, **kwargs):
        cm = real_decoded(*args, **kwargs)
        buffer = cm.__enter__()
        buffers.append(buffer)
        token.cancel()
        return _Wrapped(cm, buffer)

    class _Wrapped:
        def __init__(self, cm, buffer):
            self.cm, self.buffer = cm, buffer

        def __enter__(self):
            return self.buffer

        def __exit__(self, *exc):
            return self.cm.__exit__(*exc)

    monkeypatch.setattr(engine_module, "decoded", _tracking_decoded)
    outcome = AnalysisEngine().analyze_bytes(click_120_wav, token=token)

    assert isinstance(outcome.error, AnalysisCancelled)
    assert buffers and buffers[0].channels == []


def test_unexpected_error_aborts_and_propagates(monkeypatch, click_120):
    import trackdiff.analysis.engine as engine_module

    def _boom(self, buffer, token=None):
        raise RuntimeError("forced extractor failure")
        yield  # pragma: no cover

    monkeypatch.setattr(engine_module.FrameExtractor, "iter_frames", _boom)
    calls = []
    with pytest.raises(RuntimeError, match="forced extractor failure"):
        AnalysisEngine().analyze_buffer(make_buffer(click_120), on_complete=calls.append)
    assert len(calls) == 1
    assert calls[0].state is RunState.ABORTED


def test_analyze_file_and_file_url(tmp_path, click_120):
    wav_path = tmp_path / "track.wav"
    sf.write(str(wav_path), click_120, 22050)
    engine = AnalysisEngine()

    from_path = engine.analyze_file(str(wav_path))
    from_url = engine.analyze_file(wav_path.as_uri())

    assert from_path.ok and from_url.ok
    assert from_path.result == from_url.result


def test_missing_file_aborts_through_completion(tmp_path):
    calls = []
    outcome = AnalysisEngine().analyze_file(str(tmp_path / "missing.wav"), on_complete=calls.append)

    assert outcome.state is RunState.ABORTED
    assert isinstance(outcome.error, FileNotFoundError)
    assert calls == [outcome]


def test_oversized_download_is_a_source_error(tmp_path, click_120):
    wav_path = tmp_path / "track.wav"
    sf.write(str(wav_path), click_120, 22050)

    with pytest.raises(SourceError):
        fetch_audio(wav_path.as_uri(), max_bytes=1024)


def test_oversized_download_aborts_run(tmp_path, monkeypatch, click_120):
    from trackdiff.config import settings

    wav_path = tmp_path / "track.wav"
    sf.write(str(wav_path), click_120, 22050)
    monkeypatch.setattr(settings, "max_download_mb", 0)
    calls = []
    outcome = AnalysisEngine().analyze_file(wav_path.as_uri(), on_complete=calls.append)

    assert outcome.state is RunState.ABORTED
    assert isinstance(outcome.error, SourceError)
    assert not isinstance(outcome.error, DecodeError)
    assert calls == [outcome]


def test_custom_key_detector_is_used(click_120):
    class FixedKeyDetector:
        def __init__(self):
            self.frames = 0

        def observe(self, frame, sr):
            self.frames += 1

        def detect(self):
            return Key.A if self.frames else Key.UNKNOWN

    outcome = AnalysisEngine(key_detector_factory=FixedKeyDetector).analyze_buffer(make_buffer(click_120))
    assert outcome.result.key is Key.A


def test_outcome_reconcile(click_120):
    outcome = AnalysisEngine().analyze_buffer(make_buffer(click_120))

    assert isinstance(outcome.reconcile(), LocalSummary)
    report = outcome.reconcile({"tempo": 120.0, "key": 0, "loudness": -5, "energy": 0.8, "danceability": 0.7})
    assert isinstance(report, ComparisonReport)
    assert report.entry("key").matches is False


def test_decode_releases_buffer(click_120_wav):
    with decoded(click_120_wav, suffix=".wav") as buffer:
        assert buffer.sample_rate == 22050
        assert buffer.duration == pytest.approx(10.0, abs=0.01)
    assert buffer.channels == []

    standalone = decode(click_120_wav, suffix=".wav")
    assert standalone.n_samples == 220500


def test_source_suffix():
    assert source_suffix("song.MP3") == ".mp3"
    assert source_suffix("https://cdn.example.com/preview/abc.mp3?cid=1") == ".mp3"
    assert source_suffix("https://cdn.example.com/preview/abc") == ""


# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------

def test_health_endpoint(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_api_analyze_local_only(client, click_120_wav):
    response = client.post("/api/analyze", files={"file": ("test.wav", click_120_wav, "audio/wav")})

    assert response.status_code == 200
    data = response.json()
    assert data["local"]["key"] == "Unknown"
    assert data["local"]["bpm"] > 0
    assert data["summary"]["bpm"] == data["local"]["bpm"]
    assert data["comparison"] is None


def test_api_analyze_with_reference(client, click_120_wav):
    reference = {"tempo": 120.0, "key": 0, "loudness": -5.0, "energy": 0.8, "danceability": 0.7}
    response = client.post(
        "/api/analyze",
        files={"file": ("test.wav", click_120_wav, "audio/wav")},
        data={"reference": json.dumps(reference)},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["summary"] is None
    features = [e["feature"] for e in data["comparison"]["entries"]]
    assert features == ["tempo", "key", "loudness", "energy", "danceability"]
    assert data["comparison"]["tempo_class"] in ("precise", "deviation")


def test_api_analyze_rejects_bad_reference(client, click_120_wav):
    response = client.post(
        "/api/analyze",
        files={"file": ("test.wav", click_120_wav, "audio/wav")},
        data={"reference": "[1, 2"},
    )
    assert response.status_code == 400


def test_api_analyze_rejects_undecodable_audio(client):
    response = client.post("/api/analyze", files={"file": ("test.wav", b"garbage", "audio/wav")})
    assert response.status_code == 400
    assert response.json()["detail"] == "Could not decode audio"


def test_api_analyze_rejects_unsupported_extension(client):
    response = client.post("/api/analyze", files={"file": ("notes.txt", b"hello", "text/plain")})
    assert response.status_code == 400
    assert "Unsupported format" in response.json()["detail"]


def test_api_analyze_rejects_oversized_file(client, monkeypatch):
    from trackdiff.config import settings

    monkeypatch.setattr(settings, "max_upload_mb", 1)
    payload = b"x" * (1024 * 1024 + 1)

    response = client.post("/api/analyze", files={"file": ("big.wav", payload, "audio/wav")})

    assert response.status_code == 400
    assert "File too large" in response.json()["detail"]


def test_api_analyze_failure_returns_generic_error(client, monkeypatch, click_120_wav):
    """Upload endpoint should not leak internal exception details."""
    import trackdiff.api.upload as upload_module

    def _raise(*args, **kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr(upload_module.AnalysisEngine, "analyze_bytes", _raise)
    response = client.post("/api/analyze", files={"file": ("test.wav", click_120_wav, "audio/wav")})

    assert response.status_code == 500
    assert response.json()["detail"] == "Analysis failed"


def test_api_compare(client):
    body = {
        "local": {"bpm": 118, "loudness": -6, "rms": 0.4, "key": "Unknown"},
        "reference": {"tempo": 120, "key": 0, "loudness": -5, "energy": 0.8, "danceability": 0.7},
    }
    first = client.post("/api/compare", json=body)
    second = client.post("/api/compare", json=body)

    assert first.status_code == 200
    assert first.content == second.content
    comparison = first.json()["comparison"]
    assert comparison["tempo_diff"] == pytest.approx(2.0)
    assert comparison["tempo_class"] == "precise"
    assert comparison["local_energy"] == 1.0
    key = next(e for e in comparison["entries"] if e["feature"] == "key")
    assert key["matches"] is False


def test_api_compare_local_only(client):
    body = {"local": {"bpm": 118, "loudness": -6, "rms": 0.4}}
    response = client.post("/api/compare", json=body)

    assert response.status_code == 200
    assert response.json()["summary"] == {"bpm": 118.0, "loudness": -6.0, "rms": 0.4, "key": "Unknown"}
    assert response.json()["comparison"] is None


def test_api_compare_degrades_malformed_reference(client):
    body = {
        "local": {"bpm": 118, "loudness": -6, "rms": 0.4},
        "reference": {"tempo": "n/a", "key": 0, "loudness": -5},
    }
    response = client.post("/api/compare", json=body)

    assert response.status_code == 200
    entries = {e["feature"]: e for e in response.json()["comparison"]["entries"]}
    assert entries["tempo"]["comparable"] is False
    assert entries["energy"]["comparable"] is False
    assert entries["loudness"]["comparable"] is True


def test_api_compare_rejects_out_of_range_local(client):
    body = {"local": {"bpm": -120, "loudness": -6, "rms": 5.0}}
    response = client.post("/api/compare", json=body)

    assert response.status_code == 422
