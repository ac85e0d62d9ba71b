import asyncio
import io
import wave

import pytest

from transcription_engine.errors import AudioSourceError
from transcription_engine.services.audio_segmenter.audio_source import (
    BufferedAudioSource,
    GeneratedAudioSource,
    WaveFileAudioSource,
)
from transcription_engine.services.chunk_encoder.manager import ChunkEncoder
from transcription_engine.services.chunk_encoder.pcm import SilentPCM, TonePCM


@pytest.mark.unit
class TestBufferedAudioSource:
    """Test the push-fed source."""

    async def test_capture_returns_fed_frames(self):
        source = BufferedAudioSource("spk1")
        await source.start_capture()
        source.feed(b"\x01\x02")
        source.feed(b"\x03\x04")

        assert source.is_capturing
        assert await source.stop_capture() == b"\x01\x02\x03\x04"
        assert source.is_capturing is False
        assert await source.stop_capture() == b""

    async def test_partial_frame_carries_to_next_window(self):
        source = BufferedAudioSource("spk1", sample_width=2, channels=1)

        await source.start_capture()
        source.feed(b"\x01\x02\x03")
        assert await source.stop_capture() == b"\x01\x02"

        await source.start_capture()
        source.feed(b"\x04\x05\x06")
        assert await source.stop_capture() == b"\x03\x04\x05\x06"

    async def test_windows_stay_on_sample_grid_through_encoder(self):
        source = BufferedAudioSource("spk1", sample_width=2, channels=2)
        encoder = ChunkEncoder()
        fed = bytes(range(1, 11))
        windows = []

        for piece in (fed[:3], fed[3:7], fed[7:]):
            await source.start_capture()
            source.feed(piece)
            pcm = await source.stop_capture()
            if pcm:
                windows.append(pcm)

        assert b"".join(windows) == fed[:8]
        for sequence, pcm in enumerate(windows):
            chunk = await encoder.encode(
                pcm,
                speaker_id="spk1",
                sequence=sequence,
                sample_rate=16000,
                sample_width=2,
                channels=2,
            )
            with wave.open(io.BytesIO(chunk.payload), "rb") as wav_file:
                assert wav_file.readframes(wav_file.getnframes()) == pcm

    async def test_feed_after_end_is_ignored(self):
        source = BufferedAudioSource("spk1")
        source.end()
        source.feed(b"\x01\x02")

        assert source.is_live is False
        assert await source.stop_capture() == b""

    async def test_start_after_end_raises(self):
        source = BufferedAudioSource("spk1")
        source.end()

        with pytest.raises(AudioSourceError):
            await source.start_capture()

    async def test_release_ends_source(self):
        source = BufferedAudioSource("spk1")
        source.feed(b"\x00\x00")

        await source.release()

        assert source.is_live is False
        await asyncio.wait_for(source.wait_ended(), timeout=1.0)


@pytest.mark.unit
class TestGeneratedAudioSource:
    """Test the synthesized real-time source."""

    async def test_audio_matches_elapsed_time(self):
        source = GeneratedAudioSource("spk1", SilentPCM())
        await source.start_capture()
        await asyncio.sleep(0.05)
        pcm = await source.stop_capture()

        # 16 kHz mono 16-bit: 32 bytes per millisecond
        assert len(pcm) >= 32 * 45

    async def test_live_limit_ends_source_and_caps_audio(self):
        source = GeneratedAudioSource("spk1", TonePCM(), live_seconds=0.05)
        await source.start_capture()
        await asyncio.sleep(0.15)
        pcm = await source.stop_capture()

        assert source.is_live is False
        assert 32 * 48 <= len(pcm) <= 32 * 50

    async def test_stop_without_start_is_empty(self):
        source = GeneratedAudioSource("spk1", SilentPCM())
        assert await source.stop_capture() == b""

    async def test_release_cancels_live_timer(self):
        source = GeneratedAudioSource("spk1", SilentPCM(), live_seconds=10.0)
        await source.start_capture()

        await source.release()

        assert source._end_handle is None
        assert source.is_live is False


@pytest.mark.unit
class TestWaveFileAudioSource:
    """Test replaying a WAV file."""

    @pytest.fixture
    def wav_path(self, tmp_path):
        path = tmp_path / "speech.wav"
        with wave.open(str(path), "wb") as wav_file:
            wav_file.setnchannels(1)
            wav_file.setsampwidth(2)
            wav_file.setframerate(16000)
            wav_file.writeframes(TonePCM().generate(100))
        return str(path)

    async def test_reads_format_from_file(self, wav_path):
        source = WaveFileAudioSource("spk1", wav_path)

        assert source.sample_rate == 16000
        assert source.sample_width == 2
        assert source.channels == 1

    async def test_source_ends_when_file_is_exhausted(self, wav_path):
        source = WaveFileAudioSource("spk1", wav_path)
        await source.start_capture()
        await asyncio.sleep(0.2)
        pcm = await source.stop_capture()

        assert len(pcm) == 3200
        assert source.is_live is False

    async def test_partial_window_keeps_source_live(self, wav_path):
        source = WaveFileAudioSource("spk1", wav_path)
        await source.start_capture()
        await asyncio.sleep(0.02)
        pcm = await source.stop_capture()

        assert 0 < len(pcm) < 3200
        assert source.is_live

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(AudioSourceError):
            WaveFileAudioSource("spk1", str(tmp_path / "missing.wav"))

    def test_invalid_file_raises(self, tmp_path):
        path = tmp_path / "not_audio.wav"
        path.write_bytes(b"definitely not a wav file")

        with pytest.raises(AudioSourceError):
            WaveFileAudioSource("spk1", str(path))
