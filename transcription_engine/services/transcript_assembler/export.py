from __future__ import annotations

import asyncio
import json
import os
from typing import TYPE_CHECKING, Any

import aiofiles

if TYPE_CHECKING:
    from transcription_engine.context import Context
    from transcription_engine.services.transcript_assembler.manager import TranscriptAssembler

from transcription_engine.services.manager import BaseTranscriptExportServiceManager
from transcription_engine.utils import get_current_timestamp

SUPPORTED_FORMATS = ("json", "jsonl")

# -------------------------------------------------------------- #
# Transcript Exporter
# -------------------------------------------------------------- #


class TranscriptExporter:
    """Writes an assembled transcript to JSON or JSON Lines files."""

    def __init__(self, storage_path: str):
        self.storage_path = storage_path

    def build_filename(self, session_id: str, fmt: str = "json") -> str:
        """Build a standardized filename for a session transcript."""
        return f"transcript_{session_id}.{fmt}"

    async def ensure_storage(self) -> None:
        loop = asyncio.get_running_loop()
        if not await loop.run_in_executor(None, os.path.exists, self.storage_path):
            await loop.run_in_executor(
                None, lambda: os.makedirs(self.storage_path, exist_ok=True)
            )

    async def write(
        self, assembler: TranscriptAssembler, session_id: str, fmt: str = "json"
    ) -> str:
        """
        Write the transcript of a session.

        Args:
            assembler: Assembler holding the transcript
            session_id: Session the transcript belongs to
            fmt: "json" for one document, "jsonl" for one segment per line

        Returns:
            Path of the written file

        Raises:
            ValueError: If the format is not supported
        """
        if fmt not in SUPPORTED_FORMATS:
            raise ValueError(f"Unsupported export format: {fmt}")

        await self.ensure_storage()
        file_path = os.path.join(self.storage_path, self.build_filename(session_id, fmt))

        if fmt == "json":
            document = assembler.to_dict()
            document["exported_at"] = get_current_timestamp().isoformat()
            content = json.dumps(document, indent=2, ensure_ascii=False)
        else:
            lines = [
                json.dumps(segment.to_dict(), ensure_ascii=False)
                for segment in assembler.get_transcript()
            ]
            content = "\n".join(lines) + ("\n" if lines else "")

        async with aiofiles.open(file_path, mode="w", encoding="utf-8") as f:
            await f.write(content)

        return file_path


async def load_jsonl(file_path: str) -> list[dict[str, Any]]:
    """Read a JSON Lines transcript export back into segment dicts."""
    records = []
    async with aiofiles.open(file_path, encoding="utf-8") as f:
        async for line in f:
            line = line.strip()
            if line:
                records.append(json.loads(line))
    return records


# -------------------------------------------------------------- #
# Transcript Export Service
# -------------------------------------------------------------- #


class TranscriptExportService(BaseTranscriptExportServiceManager):
    """Service for exporting session transcripts to storage."""

    def __init__(self, context: Context, export_dir: str = "transcripts"):
        super().__init__(context)
        self.export_dir = export_dir
        self.exporter = TranscriptExporter(export_dir)

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services) -> None:
        await super().on_start(services)
        await self.exporter.ensure_storage()
        await self.services.logging_service.info(
            f"TranscriptExportService initialized with storage path: {self.get_storage_path()}"
        )

    async def on_close(self) -> None:
        if self.services:
            await self.services.logging_service.info("TranscriptExportService closed")

    # -------------------------------------------------------------- #
    # Export Methods
    # -------------------------------------------------------------- #

    def get_storage_path(self) -> str:
        """Get the absolute storage path."""
        return os.path.abspath(self.export_dir)

    async def export(self, assembler: Any, session_id: str, fmt: str = "json") -> str:
        try:
            file_path = await self.exporter.write(assembler, session_id, fmt)
        except Exception as e:
            await self.services.logging_service.error(
                f"Failed to export transcript for session {session_id}: {str(e)}"
            )
            raise RuntimeError(f"Failed to export transcript: {str(e)}") from e

        await self.services.logging_service.info(
            f"Exported transcript for session {session_id} "
            f"({assembler.segment_count} segments) to {file_path}"
        )
        return file_path
