"""Transcript aggregation for a streaming session.

Subscribes to a transcription result topic and keeps the authoritative
transcript: final results are appended in arrival order, and the latest
partial result is held separately until the turn it belongs to is
finalized.
"""

import logging
import threading
from typing import List
from pubsub import pub
from ..models.transcription import TranscriptionResult

logger = logging.getLogger(__name__)


class TranscriptAggregator:
    """Accumulates final segments and tracks the current partial."""

    def __init__(self, topic: str):
        """Initialize transcript aggregator.

        Args:
            topic: Topic for transcription results
        """
        self.topic = topic
        self.final_results: List[TranscriptionResult] = []
        self.partial_transcript = ""
        self.lock = threading.RLock()

        pub.subscribe(self._on_result, topic)
        logger.info(f"TranscriptAggregator initialized - subscribed to {topic}")

    def _on_result(self, result: TranscriptionResult) -> None:
        """Handle transcription result."""
        with self.lock:
            if result.is_final:
                self.final_results.append(result)
                self.partial_transcript = ""
                logger.info(f"Final segment: '{result.text}'")
            else:
                self.partial_transcript = result.text

    @property
    def full_transcript(self) -> str:
        """All final segments joined with single spaces."""
        with self.lock:
            return " ".join(r.text for r in self.final_results)

    def get_final_results(self) -> List[TranscriptionResult]:
        with self.lock:
            return list(self.final_results)

    def clear(self) -> None:
        """Forget all segments and the current partial."""
        with self.lock:
            self.final_results.clear()
            self.partial_transcript = ""

    def shutdown(self) -> None:
        """Stop listening for results."""
        try:
            pub.unsubscribe(self._on_result, self.topic)
        except Exception as e:
            logger.warning(f"Error during unsubscribe: {e}")
