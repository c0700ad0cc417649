from typing import TYPE_CHECKING

from dotenv import load_dotenv

if TYPE_CHECKING:
    from source.context import Context

from source.config import TranscriptionConfig
from source.constructor import ServerManagerType
from source.services.logger import AsyncLoggingService
from source.services.manager import ServicesManager

# prefer a project-local .env.local file, then fallback to any .env
load_dotenv(dotenv_path=".env.local")

# -------------------------------------------------------------- #
# Constructor for Dynamic Creation of Services Manager
# -------------------------------------------------------------- #


def construct_services_manager(
    service_type: ServerManagerType,
    context: "Context",
    transcription_storage_path: str,
    config: TranscriptionConfig | None = None,
    default_logging_path: str = "logs",
    log_file: str | None = None,
    use_timestamp_logs: bool = True,
    min_log_level: str = "INFO",
    console_output: bool = True,
) -> ServicesManager:
    """Construct and return a service manager instance based on the service type.

    Args:
        service_type: Type of server manager (DEVELOPMENT, PRODUCTION or TESTING)
        context: Context instance containing server and services
        transcription_storage_path: Directory for per-session transcript logs
        config: Pipeline configuration (defaults to ``context.config``, then to the environment)
        default_logging_path: Directory to store log files (default: "logs")
        log_file: Specific log file name (optional, overrides use_timestamp_logs)
        use_timestamp_logs: If True and log_file is None, creates timestamped log files (default: True)
        min_log_level: Lowest level written to the application log
        console_output: Also print log lines to stdout
    """
    if service_type not in (
        ServerManagerType.DEVELOPMENT,
        ServerManagerType.PRODUCTION,
        ServerManagerType.TESTING,
    ):
        raise ValueError(f"Unsupported service type: {service_type}")

    if config is None:
        config = context.config or TranscriptionConfig.from_env()

    # create logger
    logging_service = AsyncLoggingService(
        context=context,
        log_dir=default_logging_path,
        log_file=log_file,
        use_timestamp=use_timestamp_logs,
        console_output=console_output,
        min_level=min_log_level,
    )

    # -------------------------------------------------------------- #
    # Service Managers Setup
    # -------------------------------------------------------------- #

    from source.services.speech_recognition.manager import SpeechRecognitionManagerService
    from source.services.transcript_file_manager.manager import TranscriptFileManagerService

    transcript_file_service_manager = TranscriptFileManagerService(
        context=context, transcription_storage_path=transcription_storage_path
    )
    speech_recognition_service_manager = SpeechRecognitionManagerService(
        context=context, default_language=config.language
    )

    # -------------------------------------------------------------- #
    # Transcription Session Manager Setup
    # -------------------------------------------------------------- #

    from source.services.transcription_session_manager.manager import (
        TranscriptionSessionManagerService,
    )

    transcription_session_manager = TranscriptionSessionManagerService(
        context=context, config=config
    )

    return ServicesManager(
        context=context,
        logging_service=logging_service,
        transcript_file_service_manager=transcript_file_service_manager,
        speech_recognition_service_manager=speech_recognition_service_manager,
        transcription_session_manager=transcription_session_manager,
    )
