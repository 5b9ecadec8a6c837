"""Audio publisher module for pub/sub event publishing."""

import logging
from pubsub import pub
from ..models.audio import AudioChunk

logger = logging.getLogger(__name__)


class AudioPublisher:
    """Publishes capture signals using pubsub.pub, one topic per signal.

    Topics (with the default prefix ``audio``):
        audio.chunk      listeners take ``chunk: AudioChunk``
        audio.amplitude  listeners take ``amplitude: float``
        audio.error      listeners take ``message: str``
    """

    def __init__(self, topic_prefix: str = "audio"):
        """Initialize audio publisher.

        Args:
            topic_prefix: Root pub/sub topic name for this capture source
        """
        self.topic_prefix = topic_prefix
        self.chunk_topic = f"{topic_prefix}.chunk"
        self.amplitude_topic = f"{topic_prefix}.amplitude"
        self.error_topic = f"{topic_prefix}.error"
        logger.info(f"AudioPublisher initialized with topic prefix: {topic_prefix}")

    def publish_chunk(self, chunk: AudioChunk) -> None:
        """Publish an audio chunk to the chunk topic."""
        pub.sendMessage(self.chunk_topic, chunk=chunk)

    def publish_amplitude(self, amplitude: float) -> None:
        """Publish the latest normalized amplitude."""
        pub.sendMessage(self.amplitude_topic, amplitude=amplitude)

    def publish_error(self, message: str) -> None:
        """Publish a capture error message."""
        logger.error(f"Audio capture error: {message}")
        pub.sendMessage(self.error_topic, message=message)

    def unsubscribe_all(self) -> None:
        """Drop every listener subscribed to this publisher's topics."""
        topic_mgr = pub.getDefaultTopicMgr()
        for topic in (self.chunk_topic, self.amplitude_topic, self.error_topic):
            if topic_mgr.getTopic(topic, okIfNone=True) is not None:
                pub.unsubAll(topic)
