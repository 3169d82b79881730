"""PCM helpers: downmix received audio and wrap it in a WAV container."""

from __future__ import annotations

import io
import wave

import numpy as np

DISCORD_SAMPLE_RATE = 48000
DISCORD_CHANNELS = 2


def encode_wav(pcm: bytes, sample_rate: int = 16000, channels: int = 1) -> bytes:
    """Wrap 16-bit little-endian PCM in a 44-byte-header WAV container."""
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(channels)
        wav.setsampwidth(2)
        wav.setframerate(sample_rate)
        wav.writeframes(pcm)
    return buffer.getvalue()


def downmix_to_mono(
    pcm: bytes,
    target_rate: int = 16000,
    source_rate: int = DISCORD_SAMPLE_RATE,
    channels: int = DISCORD_CHANNELS,
) -> bytes:
    """Average interleaved 16-bit channels into one and resample linearly.

    A trailing partial frame is dropped.
    """
    samples = np.frombuffer(pcm, dtype="<i2")
    usable = len(samples) - len(samples) % channels
    if usable == 0:
        return b""
    mono = samples[:usable].reshape(-1, channels).astype(np.float32).mean(axis=1)
    if target_rate != source_rate:
        out_length = len(mono) * target_rate // source_rate
        positions = np.arange(out_length) * (source_rate / target_rate)
        mono = np.interp(positions, np.arange(len(mono)), mono)
    return np.clip(np.round(mono), -32768, 32767).astype("<i2").tobytes()
