from transcription_engine.services.transcript_assembler.export import (
    TranscriptExporter,
    TranscriptExportService,
    load_jsonl,
)
from transcription_engine.services.transcript_assembler.manager import (
    TranscriptAssembler,
    TranscriptEvent,
    TranscriptSegment,
)

__all__ = [
    "TranscriptAssembler",
    "TranscriptEvent",
    "TranscriptExportService",
    "TranscriptExporter",
    "TranscriptSegment",
    "load_jsonl",
]
