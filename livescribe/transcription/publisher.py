"""Transcription publisher module for pub/sub event publishing."""

import logging
from pubsub import pub
from ..models.transcription import TranscriptionResult

logger = logging.getLogger(__name__)


class TranscriptionPublisher:
    """Publishes streaming-session signals using pubsub.pub, one topic per signal.

    Topics (with the default prefix ``transcription``):
        transcription.result      listeners take ``result: TranscriptionResult``
        transcription.error       listeners take ``message: str``
        transcription.connection  listeners take ``connected: bool``
    """

    def __init__(self, topic_prefix: str = "transcription"):
        """Initialize transcription publisher.

        Args:
            topic_prefix: Root pub/sub topic name for this session
        """
        self.topic_prefix = topic_prefix
        self.result_topic = f"{topic_prefix}.result"
        self.error_topic = f"{topic_prefix}.error"
        self.connection_topic = f"{topic_prefix}.connection"
        logger.info(f"TranscriptionPublisher initialized with topic prefix: {topic_prefix}")

    def publish_result(self, result: TranscriptionResult) -> None:
        """Publish a transcription result to the result topic."""
        pub.sendMessage(self.result_topic, result=result)
        logger.debug(f"Published transcription result (final={result.is_final}): {result.text[:50]}")

    def publish_error(self, message: str) -> None:
        """Publish an error message."""
        logger.warning(f"Transcription error: {message}")
        pub.sendMessage(self.error_topic, message=message)

    def publish_connection(self, connected: bool) -> None:
        """Publish a connection state change."""
        pub.sendMessage(self.connection_topic, connected=connected)

    def unsubscribe_all(self) -> None:
        """Drop every listener subscribed to this publisher's topics."""
        topic_mgr = pub.getDefaultTopicMgr()
        for topic in (self.result_topic, self.error_topic, self.connection_topic):
            if topic_mgr.getTopic(topic, okIfNone=True) is not None:
                pub.unsubAll(topic)
