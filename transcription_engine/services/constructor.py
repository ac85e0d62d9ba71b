from typing import TYPE_CHECKING

from dotenv import load_dotenv

if TYPE_CHECKING:
    from transcription_engine.context import Context

from transcription_engine.config import EngineConfig
from transcription_engine.constructor import EngineType
from transcription_engine.services.chunk_encoder.manager import ChunkEncoderService
from transcription_engine.services.logger import AsyncLoggingService
from transcription_engine.services.manager import ServicesManager
from transcription_engine.services.session.manager import TranscriptionSessionManagerService
from transcription_engine.services.transcript_assembler.export import TranscriptExportService

# prefer a project-local .env.local file
load_dotenv(dotenv_path=".env.local")

# -------------------------------------------------------------- #
# Constructor for Dynamic Creation of Services Manager
# -------------------------------------------------------------- #


def construct_services_manager(
    engine_type: EngineType,
    context: "Context",
    config: "EngineConfig | None" = None,
    log_dir: str | None = None,
    log_file: str | None = None,
    use_timestamp_logs: bool = True,
    export_dir: str | None = None,
) -> ServicesManager:
    """Construct and return a services manager for the given engine type.

    Args:
        engine_type: PRODUCTION or TESTING wiring
        context: Context instance containing server and services
        config: Engine configuration (falls back to context.config, then the environment)
        log_dir: Directory to store log files (default: config.log_dir)
        log_file: Specific log file name (optional, overrides use_timestamp_logs)
        use_timestamp_logs: If True and log_file is None, creates timestamped log files
        export_dir: Directory for transcript exports (default: config.transcript_export_dir)
    """
    config = config or context.config or EngineConfig.from_env()
    if context.config is None:
        context.set_config(config)

    if engine_type == EngineType.PRODUCTION:
        ffmpeg_path = config.ffmpeg_path
        console_output = True
    elif engine_type == EngineType.TESTING:
        # tests always run on plain WAV chunks
        ffmpeg_path = None
        console_output = False
    else:
        raise ValueError(f"Unsupported EngineType: {engine_type}")

    # create logger
    logging_service = AsyncLoggingService(
        context=context,
        log_dir=log_dir or config.log_dir,
        log_file=log_file,
        use_timestamp=use_timestamp_logs,
        console_output=console_output,
    )

    # -------------------------------------------------------------- #
    # Service Managers Setup
    # -------------------------------------------------------------- #

    chunk_encoder_service = ChunkEncoderService(context=context, ffmpeg_path=ffmpeg_path)
    transcript_export_service = TranscriptExportService(
        context=context, export_dir=export_dir or config.transcript_export_dir
    )
    session_manager_service = TranscriptionSessionManagerService(context=context)

    return ServicesManager(
        context=context,
        logging_service=logging_service,
        chunk_encoder_service=chunk_encoder_service,
        transcript_export_service=transcript_export_service,
        session_manager_service=session_manager_service,
    )
