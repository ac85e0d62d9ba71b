from transcription_engine.services.payload_classifier.classifier import (
    ClassifiedText,
    RawSideChannelMessage,
    classify_message,
    classify_payload,
    is_likely_transcription,
)
from transcription_engine.services.payload_classifier.listener import (
    InMemorySideChannel,
    SideChannelListener,
    SideChannelTransport,
)

__all__ = [
    "ClassifiedText",
    "InMemorySideChannel",
    "RawSideChannelMessage",
    "SideChannelListener",
    "SideChannelTransport",
    "classify_message",
    "classify_payload",
    "is_likely_transcription",
]
