"""
Operator-tunable settings of the Convertor.

`ConvertorSettings` is an explicit, immutable configuration value. It is built
once (from defaults, the user's YAML file and command-line overrides) and
handed to the scheduler, the plan builder and the pipeline at construction
time. Changing a setting means building a new value with `with_overrides` and
passing it on (for example `Scheduler.set_concurrency`).

The YAML file understood by `load_settings` looks like:

    paths:
      ffmpeg_dir: /opt/ffmpeg/bin
    conversion:
      max_concurrency: 4
      default_audio_format: aac
      audio_quality: high
      default_video_codec: h264
      default_video_resolution: 1080p
      video_quality: medium
      default_audio_bitrate_kbps: 256
      output_directory_type: downloads
      custom_output_directory: ~/Converted
      hardware_acceleration: auto
"""
import dataclasses
import sys
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from loguru import logger

from ..domain.exceptions import ConfigurationError
from ..domain.media import (
    AudioQuality,
    OutputFormat,
    VideoCodec,
    VideoQuality,
    VideoResolution,
)
from .audio import DEFAULT_AUDIO_BITRATE_KBPS
from .common import (
    CANCEL_GRACE_SECONDS,
    DEFAULT_MAX_CONCURRENCY,
    ENGINE_EXECUTABLE_NAME,
    MAX_CONCURRENCY,
    MIN_CONCURRENCY,
    USER_CONFIG_PATH,
)
from .video import hardware_acceleration_available


class OutputDirectoryType(str, Enum):
    DOCUMENTS = "documents"
    DOWNLOADS = "downloads"
    CUSTOM = "custom"

    @property
    def path(self) -> Optional[Path]:
        """The well-known location behind this type, or None for a custom directory."""
        if self is OutputDirectoryType.DOCUMENTS:
            return Path.home() / "Documents"
        if self is OutputDirectoryType.DOWNLOADS:
            return Path.home() / "Downloads"
        return None


def validate_concurrency(value: int) -> int:
    """
    Checks a maximum-concurrency value against the scheduler bounds.

    Raises:
        ConfigurationError: If the value is not an int within [MIN_CONCURRENCY, MAX_CONCURRENCY].
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationError(f"max_concurrency must be an integer, got {value!r}")
    if not MIN_CONCURRENCY <= value <= MAX_CONCURRENCY:
        raise ConfigurationError(
            f"max_concurrency must be between {MIN_CONCURRENCY} and {MAX_CONCURRENCY}, got {value}"
        )
    return value


@dataclass(frozen=True)
class ConvertorSettings:
    """
    Defaults for new jobs plus the knobs of the scheduler and the engine.

    Attributes:
        max_concurrency: Maximum number of jobs converting at once (1-16).
        default_audio_format: Output format of new audio jobs.
        audio_quality: Preset of new audio jobs; 'lossless' forces the ALAC format.
        default_video_codec: Codec of new video jobs.
        default_video_resolution: Target resolution of new video jobs.
        video_quality: Quality preset (fixed bitrate) of new video jobs.
        default_audio_bitrate_kbps: Audio bitrate of new jobs.
        output_directory_type: Which well-known location receives outputs.
        custom_output_directory: Directory used when the type is 'custom'.
        engine_path: Explicit path of the engine executable, if any.
        engine_dir: Directory holding the engine, from the 'paths' YAML section.
        hardware_acceleration: Use hardware encoders; None means detect the platform.
        cancel_grace_seconds: Wait between the stop signal and the forced kill.
    """

    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    default_audio_format: OutputFormat = OutputFormat.AAC
    audio_quality: AudioQuality = AudioQuality.HIGH
    default_video_codec: VideoCodec = VideoCodec.H264
    default_video_resolution: VideoResolution = VideoResolution.R1080P
    video_quality: VideoQuality = VideoQuality.MEDIUM
    default_audio_bitrate_kbps: int = DEFAULT_AUDIO_BITRATE_KBPS
    output_directory_type: OutputDirectoryType = OutputDirectoryType.DOWNLOADS
    custom_output_directory: Optional[Path] = None
    engine_path: Optional[Path] = None
    engine_dir: Optional[Path] = None
    hardware_acceleration: Optional[bool] = None
    cancel_grace_seconds: float = CANCEL_GRACE_SECONDS

    def __post_init__(self):
        validate_concurrency(self.max_concurrency)
        if self.default_audio_format is OutputFormat.MP4:
            raise ConfigurationError("default_audio_format must be an audio format")
        if self.default_audio_bitrate_kbps <= 0:
            raise ConfigurationError("default_audio_bitrate_kbps must be positive")
        if self.cancel_grace_seconds < 0:
            raise ConfigurationError("cancel_grace_seconds must not be negative")

    @property
    def use_hardware_acceleration(self) -> bool:
        if self.hardware_acceleration is None:
            return hardware_acceleration_available()
        return self.hardware_acceleration

    @property
    def audio_format_for_new_jobs(self) -> OutputFormat:
        if self.audio_quality is AudioQuality.LOSSLESS:
            return OutputFormat.ALAC
        return self.default_audio_format

    def output_directory(self) -> Path:
        """
        Resolves the directory that receives converted files.

        A custom type without a chosen directory falls back to Documents.
        """
        if self.output_directory_type is OutputDirectoryType.CUSTOM:
            if self.custom_output_directory is not None:
                return Path(self.custom_output_directory).expanduser()
            return OutputDirectoryType.DOCUMENTS.path
        return self.output_directory_type.path

    def engine_executable(self) -> str:
        """
        The engine to launch: explicit path, else the configured directory, else the PATH name.
        """
        if self.engine_path is not None:
            return str(Path(self.engine_path).expanduser())
        if self.engine_dir is not None:
            exe_name = f"{ENGINE_EXECUTABLE_NAME}.exe" if sys.platform == "win32" else ENGINE_EXECUTABLE_NAME
            return str(Path(self.engine_dir).expanduser() / exe_name)
        return ENGINE_EXECUTABLE_NAME

    def with_overrides(self, **changes: Any) -> "ConvertorSettings":
        """Returns a validated copy with the given fields replaced. None values are ignored."""
        changes = {k: v for k, v in changes.items() if v is not None}
        return dataclasses.replace(self, **changes)


# --- YAML Loading ---

_ENUM_FIELDS = {
    "default_audio_format": OutputFormat,
    "audio_quality": AudioQuality,
    "default_video_codec": VideoCodec,
    "default_video_resolution": VideoResolution,
    "video_quality": VideoQuality,
    "output_directory_type": OutputDirectoryType,
}
_PATH_FIELDS = ("custom_output_directory", "engine_path")


def _parse_tristate(raw: Any) -> Optional[bool]:
    """Parses 'auto' (None) or a YAML/textual boolean."""
    if isinstance(raw, bool):
        return raw
    text = str(raw).strip().lower()
    if text == "auto":
        return None
    if text in ("true", "yes", "on", "1"):
        return True
    if text in ("false", "no", "off", "0"):
        return False
    raise ValueError(f"expected 'auto' or a boolean, got {raw!r}")


def _coerce_conversion_values(section: Dict[str, Any]) -> Dict[str, Any]:
    """Converts raw YAML values of the 'conversion' section, dropping invalid ones with a warning."""
    field_names = {f.name for f in dataclasses.fields(ConvertorSettings)}
    values: Dict[str, Any] = {}
    for key, raw in section.items():
        if key not in field_names:
            logger.warning(f"Unknown setting '{key}' in user config. Ignoring.")
            continue
        if raw is None:
            continue
        try:
            if key in _ENUM_FIELDS:
                values[key] = _ENUM_FIELDS[key](str(raw).lower())
            elif key in _PATH_FIELDS:
                values[key] = Path(str(raw)).expanduser()
            elif key == "hardware_acceleration":
                values[key] = _parse_tristate(raw)
            elif key == "max_concurrency":
                values[key] = validate_concurrency(int(raw))
            elif key == "cancel_grace_seconds":
                values[key] = float(raw)
            elif key == "default_audio_bitrate_kbps":
                values[key] = int(raw)
            else:
                values[key] = raw
        except (ValueError, TypeError, ConfigurationError) as e:
            logger.warning(f"Invalid value {raw!r} for setting '{key}': {e}. Using default.")
    return values


def load_settings(config_path: Optional[Path] = None) -> ConvertorSettings:
    """
    Builds `ConvertorSettings` from the user's YAML configuration file.

    Missing, unreadable or malformed files never stop the application: problems
    are logged and the defaults are used instead.

    Args:
        config_path: The YAML file to read. Defaults to `USER_CONFIG_PATH`.

    Returns:
        The resulting settings value.
    """
    path = Path(config_path) if config_path else USER_CONFIG_PATH
    if not path.is_file():
        logger.debug(f"User config '{path}' not found. Using default settings.")
        return ConvertorSettings()

    try:
        with path.open("r", encoding="utf-8") as f:
            user_config = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Could not load or parse '{path}': {e}")
        return ConvertorSettings()

    if not isinstance(user_config, dict):
        logger.warning(f"User config '{path}' is not a mapping. Using default settings.")
        return ConvertorSettings()

    values: Dict[str, Any] = {}
    paths_config = user_config.get("paths") or {}
    if isinstance(paths_config, dict) and paths_config.get("ffmpeg_dir"):
        values["engine_dir"] = Path(str(paths_config["ffmpeg_dir"])).expanduser()

    conversion_config = user_config.get("conversion") or {}
    if isinstance(conversion_config, dict):
        values.update(_coerce_conversion_values(conversion_config))
    else:
        logger.warning(f"'conversion' section of '{path}' is not a mapping. Ignoring it.")

    try:
        settings = ConvertorSettings(**values)
    except ConfigurationError as e:
        logger.warning(f"Invalid settings in '{path}': {e}. Using default settings.")
        return ConvertorSettings()
    logger.debug(f"Loaded settings from '{path}': {settings}")
    return settings
