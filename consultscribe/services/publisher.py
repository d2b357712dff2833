"""Publishes recording state changes using pubsub.pub."""

import logging
from typing import Callable

from pubsub import pub

from ..models.recording import AudioBlob, RecordingSession, RecordingState

logger = logging.getLogger(__name__)


class RecordingPublisher:
    """Broadcasts recording state snapshots and stop notifications.

    Listeners on <topic>.state receive ``state``; listeners on
    <topic>.stopped receive ``session`` and ``audio_blob``. pubsub keeps
    weak references, so listeners must be kept alive by their owner.
    """

    def __init__(self, topic: str = "recording"):
        self.topic = topic
        self.state_topic = f"{topic}.state"
        self.stopped_topic = f"{topic}.stopped"
        logger.info(f"RecordingPublisher initialized with topic: {topic}")

    def publish_state(self, state: RecordingState) -> None:
        pub.sendMessage(self.state_topic, state=state)
        logger.debug(f"Published recording state: {state.status.value}")

    def publish_stopped(self, session: RecordingSession, audio_blob: AudioBlob) -> None:
        pub.sendMessage(self.stopped_topic, session=session, audio_blob=audio_blob)
        logger.debug(f"Published stop notification for appointment {session.appointment_id}")

    def subscribe_state(self, listener: Callable[..., None]) -> None:
        pub.subscribe(listener, self.state_topic)

    def unsubscribe_state(self, listener: Callable[..., None]) -> None:
        pub.unsubscribe(listener, self.state_topic)

    def subscribe_stopped(self, listener: Callable[..., None]) -> None:
        pub.subscribe(listener, self.stopped_topic)

    def unsubscribe_stopped(self, listener: Callable[..., None]) -> None:
        pub.unsubscribe(listener, self.stopped_topic)
