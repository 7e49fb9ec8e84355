"""
Configuration settings related to video processing.

This module defines the video file extensions accepted by the submission
surface, the encoder tables (hardware and software variants of each logical
codec), the quality and resolution presets, and the constants used when
building passthrough and subtitle arguments.
"""
import platform

# --- General Video Settings ---
VIDEO_EXTENSIONS = (".mkv", ".mp4", ".avi", ".mov", ".m4v", ".webm")
VIDEO_OUTPUT_EXTENSION = "mp4"

# --- Encoder Settings ---
# Logical codec -> (hardware encoder, software encoder). The passthrough codec
# copies the primary stream and has no encoder.
VIDEO_ENCODERS = {
    "h264": ("h264_videotoolbox", "libx264"),
    "h265": ("hevc_videotoolbox", "libx265"),
}
PASSTHROUGH_CODEC = "copy"

# Codecs whose output is tagged 'hvc1' so players recognise HEVC in MP4.
HVC1_TAGGED_CODECS = ("h265", "hevc_copy")
HVC1_TAG = "hvc1"

# --- Quality and Resolution Presets ---
# Fixed bitrate (kbps) of each video quality preset.
VIDEO_QUALITY_BITRATES = {
    "low": 1000,
    "medium": 2000,
    "high": 4000,
    "very_high": 6000,
}

# Target height (pixels) of each resolution preset. Width follows the aspect ratio.
RESOLUTION_HEIGHTS = {
    "720p": 720,
    "1080p": 1080,
    "2160p": 2160,
}

# --- Adaptive Bitrate ---
# Lower bound (kbps) of a size-targeted video bitrate.
MIN_ADAPTIVE_VIDEO_BITRATE_KBPS = 500

# --- Passthrough Thumbnail ---
# Position of the preview frame, as a fraction of the probed duration.
THUMBNAIL_POSITION_RATIO = 0.1
THUMBNAIL_QUALITY = 2
THUMBNAIL_CODEC = "mjpeg"

# --- Subtitle Settings ---
# Subtitle codec accepted by the MP4 container.
MP4_SUBTITLE_CODEC = "mov_text"
UNDETERMINED_LANGUAGE = "und"

# --- Container Settings ---
FASTSTART_FLAGS = "+faststart"


def hardware_acceleration_available() -> bool:
    """
    Reports whether the platform offers the hardware encoders of `VIDEO_ENCODERS`.

    VideoToolbox encoders are only available on Apple Silicon macOS.
    """
    return platform.system() == "Darwin" and platform.machine() == "arm64"
