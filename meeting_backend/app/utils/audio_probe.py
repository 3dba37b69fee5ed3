from pathlib import Path
import json
import logging
import subprocess

from meeting_backend.config.config import settings

logger = logging.getLogger(__name__)


class AudioProbe:
    """Reads duration and format details of an audio file with ffprobe."""

    def __init__(self, ffprobe_bin: str = settings.FFPROBE_BIN, timeout: int = settings.FFPROBE_TIMEOUT) -> None:
        self.__ffprobe_bin = ffprobe_bin
        self.__timeout = timeout

    def probe(self, file_path: str) -> dict:
        cmd = [
            self.__ffprobe_bin,
            "-v", "error",
            "-show_format",
            "-show_streams",
            "-print_format", "json",
            file_path,
        ]
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.__timeout)
        if result.returncode != 0:
            raise RuntimeError(f"ffprobe failed for {Path(file_path).name}: {result.stderr.strip()}")

        data = json.loads(result.stdout or "{}")
        format_info = data.get("format", {})

        metadata = {
            "duration": None,
            "bit_rate": None,
            "format": format_info.get("format_name"),
            "audio_codec": None,
        }
        if format_info.get("duration"):
            metadata["duration"] = float(format_info["duration"])
        if format_info.get("bit_rate"):
            metadata["bit_rate"] = int(format_info["bit_rate"])

        for stream in data.get("streams", []):
            if stream.get("codec_type") == "audio":
                metadata["audio_codec"] = stream.get("codec_name")
                break

        logger.debug(f"Probed {Path(file_path).name}: {metadata}")
        return metadata
