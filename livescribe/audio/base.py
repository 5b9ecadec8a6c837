"""Capability contract shared by the microphone capture backends."""

from typing import Optional, Protocol

from .publisher import AudioPublisher


class AudioCaptureBackend(Protocol):
    """Microphone capture producing PCM16 mono chunks at a fixed sample rate.

    Implementations publish chunks, amplitudes and errors through their
    ``publisher`` from whatever thread the platform delivers audio on.
    None of the methods raise to the caller; failures are published as
    error messages and reported through return values.
    """

    publisher: AudioPublisher

    @property
    def is_recording(self) -> bool:
        ...

    def has_permission(self) -> bool:
        """Whether the microphone can be used."""
        ...

    def start(self) -> bool:
        """Begin capture. Returns True when already recording."""
        ...

    def stop(self) -> Optional[str]:
        """End capture and return the path of an exported recording, if any."""
        ...

    def dispose(self) -> None:
        """Stop if active and release all device resources."""
        ...
