import logging

import pytest

from transcription_engine.context import Context
from transcription_engine.services.logger import AsyncLoggingService, ModuleLogger, level_number


@pytest.mark.unit
class TestAsyncLoggingService:
    """Test the queued file logger."""

    @pytest.fixture
    async def logging_service(self, tmp_path):
        service = AsyncLoggingService(
            context=Context(),
            log_dir=str(tmp_path / "logs"),
            use_timestamp=False,
            console_output=False,
        )
        await service.on_start(None)
        yield service
        await service.on_close()

    async def test_default_file_name(self, logging_service, tmp_path):
        assert logging_service.log_path == tmp_path / "logs" / "engine.log"

    async def test_timestamped_file_name(self, tmp_path):
        service = AsyncLoggingService(context=Context(), log_dir=str(tmp_path), use_timestamp=True)
        assert service.log_file.startswith("engine_")
        assert service.log_file.endswith(".log")

    async def test_messages_are_written_with_level(self, logging_service):
        await logging_service.info("segmenter started")
        await logging_service.warning("relay slow")
        await logging_service.drain()

        content = logging_service.log_path.read_text(encoding="utf-8")
        assert "[INFO] segmenter started" in content
        assert "[WARNING] relay slow" in content

    async def test_burst_is_written_in_order(self, logging_service):
        for index in range(150):
            await logging_service.debug(f"chunk #{index}")
        await logging_service.drain()

        lines = logging_service.log_path.read_text(encoding="utf-8").splitlines()
        chunk_lines = [line for line in lines if "chunk #" in line]
        assert len(chunk_lines) == 150
        assert chunk_lines[0].endswith("chunk #0")
        assert chunk_lines[-1].endswith("chunk #149")

    async def test_close_flushes_pending_messages(self, tmp_path):
        service = AsyncLoggingService(
            context=Context(), log_dir=str(tmp_path), log_file="close.log", console_output=False
        )
        await service.on_start(None)
        await service.critical("last words")
        await service.on_close()

        assert "[CRITICAL] last words" in (tmp_path / "close.log").read_text(encoding="utf-8")

    async def test_minimum_level_filters(self, tmp_path):
        service = AsyncLoggingService(
            context=Context(),
            log_dir=str(tmp_path),
            log_file="filtered.log",
            console_output=False,
            level="warning",
        )
        await service.on_start(None)
        await service.debug("chunk details")
        await service.error("chunk failed")
        await service.on_close()

        content = (tmp_path / "filtered.log").read_text(encoding="utf-8")
        assert "chunk details" not in content
        assert "[ERROR] chunk failed" in content


@pytest.mark.unit
class TestModuleLogger:
    """Test the standard library fallback."""

    async def test_forwards_to_stdlib(self, caplog):
        module_logger = ModuleLogger("transcription_engine.tests.module_logger")

        with caplog.at_level(logging.DEBUG, logger="transcription_engine.tests.module_logger"):
            await module_logger.debug("debug line")
            await module_logger.warning("warning line")
            await module_logger.log("generic line", "ERROR")

        levels = {record.getMessage(): record.levelno for record in caplog.records}
        assert levels["debug line"] == logging.DEBUG
        assert levels["warning line"] == logging.WARNING
        assert levels["generic line"] == logging.ERROR

    def test_level_number(self):
        assert level_number("warning") == logging.WARNING
        assert level_number("verbose") == logging.INFO
