# Main File

import argparse
import asyncio
import logging
import sys
from datetime import datetime
from pathlib import Path

import dotenv

from transcription_engine.config import EngineConfig
from transcription_engine.constructor import EngineType
from transcription_engine.context import Context
from transcription_engine.server.constructor import construct_server_manager
from transcription_engine.services.audio_segmenter.audio_source import (
    GeneratedAudioSource,
    WaveFileAudioSource,
)
from transcription_engine.services.chunk_encoder.pcm import TonePCM
from transcription_engine.services.constructor import construct_services_manager
from transcription_engine.services.payload_classifier.listener import InMemorySideChannel
from transcription_engine.services.transcript_assembler.manager import (
    TranscriptEvent,
    TranscriptSegment,
)

dotenv.load_dotenv(dotenv_path=".env.local")

# Configure Python's built-in logging for server initialization
# (before AsyncLoggingService is available)
logs_dir = Path("logs")
logs_dir.mkdir(parents=True, exist_ok=True)
timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
log_file = logs_dir / f"app_{timestamp}.log"

# Configure logging to output to both console and file
logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    handlers=[
        logging.StreamHandler(sys.stdout),
        logging.FileHandler(log_file, mode="a", encoding="utf-8"),
    ],
    force=True,
)

LOCAL_SPEAKER_ID = "local"


# -------------------------------------------------------------- #
# Demo Helpers
# -------------------------------------------------------------- #


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run a live transcription session.")
    parser.add_argument(
        "wav_path",
        nargs="?",
        help="WAV file to replay as the local speaker (a test tone is used if omitted)",
    )
    parser.add_argument(
        "--seconds",
        type=float,
        default=10.0,
        help="How long the generated tone source stays live (default: 10)",
    )
    parser.add_argument(
        "--format",
        choices=("json", "jsonl"),
        default="json",
        help="Transcript export format (default: json)",
    )
    return parser.parse_args(argv)


def print_segment(event: TranscriptEvent, segment: TranscriptSegment) -> None:
    marker = "" if segment.is_final else " ..."
    action = "+" if event is TranscriptEvent.APPENDED else "~"
    print(f"{action} [{segment.timestamp}] {segment.display_name}: {segment.text}{marker}")


def print_notice(notice: str) -> None:
    print(f"[NOTICE] {notice}")


# -------------------------------------------------------------- #
# Main Entry Point
# -------------------------------------------------------------- #


async def main(argv: list[str] | None = None):
    """Main function to run one demo transcription session."""
    args = parse_args(argv)

    # -------------------------------------------------------------- #
    # Startup services
    # -------------------------------------------------------------- #

    # We need to print to console initially since logging service isn't set up yet
    print("=" * 40)
    print("Syncing services...")

    config = EngineConfig.from_env()

    # Create context object
    context = Context(config=config)

    # init server manager
    servers_manager = construct_server_manager(EngineType.PRODUCTION, context, config)
    context.set_server_manager(servers_manager)
    await servers_manager.connect_all()
    print("[OK] Connected all servers.")

    # Use the same log file that was created for built-in logging
    services_manager = construct_services_manager(
        EngineType.PRODUCTION,
        context=context,
        config=config,
        log_file=log_file.name,
    )
    context.set_services_manager(services_manager)
    await services_manager.initialize_all()

    # Now we can use the async logger
    logger = services_manager.logging_service
    await logger.info("[OK] Initialized all services.")

    # -------------------------------------------------------------- #
    # Run Session
    # -------------------------------------------------------------- #

    if args.wav_path:
        source = WaveFileAudioSource(LOCAL_SPEAKER_ID, args.wav_path)
    else:
        source = GeneratedAudioSource(
            LOCAL_SPEAKER_ID, TonePCM(frequency_hz=440.0), live_seconds=args.seconds
        )

    side_channel = InMemorySideChannel()
    session_manager = services_manager.session_manager_service
    session = None

    try:
        session = await session_manager.start_session(
            sources=[source],
            side_channel=side_channel,
            local_speaker_id=LOCAL_SPEAKER_ID,
            on_notice=print_notice,
        )
        session.assembler.subscribe(print_segment)

        await session.wait_for_sources()

    finally:
        if session is not None:
            assembler = await session_manager.stop_session(session.session_id)
            if assembler is not None:
                path = await services_manager.transcript_export_service.export(
                    assembler, session.session_id, fmt=args.format
                )
                print(f"[OK] Transcript written to {path}")

        await services_manager.shutdown_all()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
