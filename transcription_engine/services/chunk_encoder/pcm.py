# -------------------------------------------------------------- #
# PCM Generator
# -------------------------------------------------------------- #

import math
import sys
from abc import ABC, abstractmethod
from array import array

# speech backends downsample to 16 kHz mono anyway; capture at that rate
DEFAULT_SAMPLE_RATE = 16000
DEFAULT_SAMPLE_WIDTH = 2
DEFAULT_CHANNELS = 1


# -------------------------------------------------------------- #
# PCM Utility Functions
# -------------------------------------------------------------- #


def calculate_pcm_duration_ms(
    num_bytes: int,
    sample_rate: int = DEFAULT_SAMPLE_RATE,
    sample_width: int = DEFAULT_SAMPLE_WIDTH,
    channels: int = DEFAULT_CHANNELS,
) -> int:
    """
    Calculate the duration in milliseconds for a given number of PCM bytes.

    Args:
        num_bytes: Number of PCM bytes
        sample_rate: Sample rate in Hz (default: 16000)
        sample_width: Bytes per sample (default: 2)
        channels: Number of channels (default: 1)

    Returns:
        Duration in milliseconds

    Example:
        >>> calculate_pcm_duration_ms(32000)  # 1 second of 16 kHz mono
        1000
    """
    bytes_per_second = sample_rate * sample_width * channels
    return int(num_bytes * 1000 / bytes_per_second)


def calculate_pcm_bytes(
    duration_ms: int,
    sample_rate: int = DEFAULT_SAMPLE_RATE,
    sample_width: int = DEFAULT_SAMPLE_WIDTH,
    channels: int = DEFAULT_CHANNELS,
) -> int:
    """
    Calculate the number of PCM bytes for a given duration.

    The result is rounded down to a whole frame.

    Example:
        >>> calculate_pcm_bytes(1000)
        32000
    """
    frame_bytes = sample_width * channels
    frames = int(sample_rate * duration_ms / 1000)
    return frames * frame_bytes


def align_to_frame(pcm: bytes, sample_width: int, channels: int) -> bytes:
    """Drop a trailing partial frame so the PCM can be written to a container."""
    frame_bytes = sample_width * channels
    remainder = len(pcm) % frame_bytes
    return pcm[: len(pcm) - remainder] if remainder else pcm


# -------------------------------------------------------------- #
# PCM Generator Base Class
# -------------------------------------------------------------- #


class PCMGenerator(ABC):
    """
    Base class for PCM audio data generators.
    """

    def __init__(
        self,
        sample_rate: int = DEFAULT_SAMPLE_RATE,
        sample_width: int = DEFAULT_SAMPLE_WIDTH,
        channels: int = DEFAULT_CHANNELS,
    ):
        if sample_width not in (1, 2, 4):
            raise ValueError("sample_width must be 1, 2 or 4 bytes")
        self.sample_rate = sample_rate
        self.sample_width = sample_width
        self.channels = channels

    def frame_count(self, ms: int) -> int:
        return round(self.sample_rate * (ms / 1000.0))

    @abstractmethod
    def generate(self, ms: int, offset: int = 0) -> bytes:
        """
        Generate PCM audio data.

        Args:
            ms: Duration in milliseconds
            offset: Offset in milliseconds from the start of the stream

        Returns:
            PCM audio data as bytes
        """
        pass


# -------------------------------------------------------------- #
# Silent PCM Generator
# -------------------------------------------------------------- #


class SilentPCM(PCMGenerator):
    """
    Generate silent PCM bytes.

    Signed PCM silence is all zeros; 8-bit PCM is unsigned so its
    silence is 0x80.
    """

    def generate(self, ms: int, offset: int = 0) -> bytes:
        nbytes = self.frame_count(ms) * self.channels * self.sample_width
        if self.sample_width == 1:
            return bytes([0x80]) * nbytes
        return bytes(nbytes)


# -------------------------------------------------------------- #
# Tone PCM Generator
# -------------------------------------------------------------- #


class TonePCM(PCMGenerator):
    """Generate a 16-bit sine tone, continuous across consecutive calls."""

    def __init__(
        self,
        frequency_hz: float = 440.0,
        amplitude: float = 0.3,
        sample_rate: int = DEFAULT_SAMPLE_RATE,
        channels: int = DEFAULT_CHANNELS,
    ):
        super().__init__(sample_rate=sample_rate, sample_width=2, channels=channels)
        self.frequency_hz = frequency_hz
        self.amplitude = max(0.0, min(amplitude, 1.0))

    def generate(self, ms: int, offset: int = 0) -> bytes:
        start = self.frame_count(offset)
        peak = int(32767 * self.amplitude)
        samples = array("h")
        for i in range(self.frame_count(ms)):
            t = (start + i) / self.sample_rate
            value = int(peak * math.sin(2 * math.pi * self.frequency_hz * t))
            samples.extend([value] * self.channels)
        if sys.byteorder == "big":
            samples.byteswap()
        return samples.tobytes()
