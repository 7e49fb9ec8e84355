"""
Configuration settings related to audio processing.

This module defines the audio file extensions accepted by the submission
surface, the bitrate tables behind the audio quality presets and the codec
names used for the two audio output formats.
"""

# ======================================================================================
# Audio File Identification
# ======================================================================================

# Extensions (lowercase, with leading dot) that classify a source file as audio.
AUDIO_EXTENSIONS = (".flac", ".wav", ".mp3", ".aac", ".m4a")


# ======================================================================================
# Audio Encoding Parameters
# ======================================================================================

# Codec passed to the engine for each audio output format. Only the lossy codec
# takes a bitrate flag.
AUDIO_CODECS = {
    "aac": "aac",
    "alac": "alac",
}
LOSSY_AUDIO_CODEC = "aac"

# Bitrates (kbps) selectable for a job's audio track.
AUDIO_BITRATE_CHOICES = (256, 320)
DEFAULT_AUDIO_BITRATE_KBPS = 256

# Extension of every audio output, lossy or lossless.
AUDIO_OUTPUT_EXTENSION = "m4a"
