"""
FFmpeg transcoder - Single Responsibility: re-encode a video to a size profile.

Optional: the optimizer passes videos through unchanged when ffmpeg is not
on PATH.
"""
import asyncio
import logging
import shutil
from pathlib import Path

from ..models import MediaAsset

logger = logging.getLogger(__name__)

AUDIO_BITRATE = "128k"


class FFmpegTranscoder:
    """Transcodes videos to H.264/AAC MP4 with ffmpeg."""

    def __init__(self, binary: str = "ffmpeg"):
        self._binary = binary

    def available(self) -> bool:
        return shutil.which(self._binary) is not None

    def build_command(self, source: Path, output: Path, max_side: int, bitrate: int) -> list:
        scale = (
            f"scale=w='min({max_side},iw)':h='min({max_side},ih)'"
            ":force_original_aspect_ratio=decrease:force_divisible_by=2"
        )
        return [
            self._binary,
            "-y",
            "-i", str(source),
            "-vf", scale,
            "-c:v", "libx264",
            "-preset", "veryfast",
            "-b:v", str(bitrate),
            "-maxrate", str(bitrate),
            "-bufsize", str(bitrate * 2),
            "-c:a", "aac",
            "-b:a", AUDIO_BITRATE,
            "-movflags", "+faststart",
            str(output),
        ]

    async def transcode(self, asset: MediaAsset, output: Path, max_side: int, bitrate: int) -> MediaAsset:
        """
        Re-encode ``asset`` into ``output``.

        Raises:
            RuntimeError: ffmpeg exited with an error
        """
        cmd = self.build_command(asset.path, output, max_side, bitrate)
        logger.debug("Running %s", " ".join(cmd))

        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            _, stderr = await proc.communicate()
        except asyncio.CancelledError:
            proc.kill()
            await proc.wait()
            raise

        if proc.returncode != 0:
            tail = stderr.decode(errors="ignore").strip().splitlines()[-5:]
            raise RuntimeError(f"ffmpeg failed for {asset.path.name}: {' '.join(tail)}")

        return asset.derive(output, mime_type="video/mp4", width=None, height=None)
