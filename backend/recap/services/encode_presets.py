"""
Encode recipes for the slideshow video.

The encode step is a closed set of named presets rather than a general
filter graph. Command construction is pure, so every form it can produce
is covered by unit tests.
"""

from dataclasses import dataclass

MANIFEST_NAME = "concat.txt"
OUTPUT_NAME = "output.mp4"
AUDIO_NAME = "audio.wav"

# Concat demuxer gives an image without an explicit duration one frame at 25 fps
DEFAULT_IMAGE_FRAME_SECONDS = 0.04


@dataclass(frozen=True)
class EncodePreset:
    """
    Fixed encode profile.

    Attributes:
        name: Preset identifier used in settings
        video_codec: ffmpeg video encoder
        speed: x264 speed preset
        crf: Constant rate factor (quality)
        frame_rate: Output frames per second
        pixel_format: Output pixel format
        audio_codec: ffmpeg audio encoder (used only with an audio track)
        audio_bitrate: Audio bitrate
    """

    name: str
    video_codec: str
    speed: str
    crf: int
    frame_rate: int
    pixel_format: str
    audio_codec: str
    audio_bitrate: str

    @property
    def encoders(self) -> tuple[str, str]:
        """Encoders the engine must provide for this preset."""
        return (self.video_codec, self.audio_codec)


PRESETS: dict[str, EncodePreset] = {
    "slideshow": EncodePreset(
        name="slideshow",
        video_codec="libx264",
        speed="medium",
        crf=23,
        frame_rate=30,
        pixel_format="yuv420p",
        audio_codec="aac",
        audio_bitrate="128k",
    ),
    "slideshow_draft": EncodePreset(
        name="slideshow_draft",
        video_codec="libx264",
        speed="veryfast",
        crf=30,
        frame_rate=30,
        pixel_format="yuv420p",
        audio_codec="aac",
        audio_bitrate="96k",
    ),
}


def get_preset(name: str) -> EncodePreset:
    """Look up a preset by name.

    Raises:
        ValueError: If the preset is unknown
    """
    try:
        return PRESETS[name]
    except KeyError:
        raise ValueError(
            f"Unknown encode preset: {name!r}. Available: {sorted(PRESETS)}"
        ) from None


def _quote(name: str) -> str:
    return "'" + name.replace("'", "'\\''") + "'"


def build_manifest(names: list[str], frame_duration: float | None = None) -> str:
    """
    Build a concat demuxer manifest, one staged image per entry.

    With frame_duration, each entry gets a duration line and the last
    file is repeated (the demuxer ignores the final duration otherwise).
    """
    lines = []
    for name in names:
        lines.append(f"file {_quote(name)}")
        if frame_duration is not None:
            lines.append(f"duration {frame_duration:g}")
    if frame_duration is not None and names:
        lines.append(f"file {_quote(names[-1])}")
    return "\n".join(lines) + "\n"


def expected_duration(entry_count: int, frame_duration: float | None = None) -> float:
    """Expected video length in seconds for a manifest of entry_count images."""
    per_frame = frame_duration if frame_duration is not None else DEFAULT_IMAGE_FRAME_SECONDS
    return entry_count * per_frame


def _input_args(manifest: str) -> list[str]:
    return ["-f", "concat", "-safe", "0", "-i", manifest]


def _video_args(preset: EncodePreset) -> list[str]:
    return [
        "-c:v", preset.video_codec,
        "-preset", preset.speed,
        "-crf", str(preset.crf),
        "-r", str(preset.frame_rate),
        "-pix_fmt", preset.pixel_format,
    ]


def _build_video_only(preset: EncodePreset, manifest: str, output: str) -> list[str]:
    return [
        *_input_args(manifest),
        *_video_args(preset),
        output,
    ]


def _build_with_audio(
    preset: EncodePreset,
    manifest: str,
    output: str,
    audio: str,
) -> list[str]:
    return [
        *_input_args(manifest),
        "-i", audio,
        *_video_args(preset),
        "-c:a", preset.audio_codec,
        "-b:a", preset.audio_bitrate,
        "-shortest",
        output,
    ]


def build_encode_command(
    preset: EncodePreset,
    manifest: str = MANIFEST_NAME,
    output: str = OUTPUT_NAME,
    audio: str | None = None,
) -> list[str]:
    """
    Build engine arguments for one encode.

    Without audio no audio argument appears at all; with audio the track
    is a second input and output stops at the shorter stream.

    Args:
        preset: Encode profile
        manifest: Staged concat manifest name
        output: Output file name
        audio: Staged audio file name, or None

    Returns:
        Argument list (without the engine binary)
    """
    if audio is None:
        return _build_video_only(preset, manifest, output)
    return _build_with_audio(preset, manifest, output, audio)
