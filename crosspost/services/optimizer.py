"""
Optimizer Service - Single Responsibility: fit media into a byte budget.

Images go down a fixed (max dimension, JPEG quality) ladder with Pillow.
Videos are re-encoded by an optional transcoder at a profile picked from
the aspect ratio, then once more at a lower bitrate.
"""
import asyncio
import logging
import tempfile
from pathlib import Path
from typing import Callable, Optional, Tuple

from PIL import Image, ImageOps

from ..models import CrossPostConfig, MediaAsset
from ..protocols import ITranscoder

logger = logging.getLogger(__name__)

IMAGE_LADDER: Tuple[Tuple[int, int], ...] = (
    (1600, 80),
    (1200, 70),
    (1000, 60),
)

# (max side, video bitrate in bit/s)
SQUARE_VIDEO_PROFILE = (1080, 3_500_000)
WIDE_VIDEO_PROFILE = (1280, 5_000_000)
FALLBACK_BITRATE_RATIO = 0.7


def video_profile(asset: MediaAsset) -> Tuple[int, int]:
    """Get (max side, bitrate) target for a video."""
    if asset.is_square:
        return SQUARE_VIDEO_PROFILE
    return WIDE_VIDEO_PROFILE


def _resize_image(source: Path, dest: Path, max_side: int, quality: int) -> Tuple[int, int]:
    with Image.open(source) as original:
        img = ImageOps.exif_transpose(original)
        if img.mode not in ("RGB", "L"):
            img = img.convert("RGB")
        img.thumbnail((max_side, max_side), Image.Resampling.LANCZOS)
        img.save(dest, "JPEG", quality=quality, optimize=True)
        return img.size


class SizeAwareOptimizer:
    """
    Shrinks an asset until it fits a destination limit.

    ``optimize`` never raises: on any transform error it returns the
    smallest asset obtained so far.
    """

    def __init__(
        self,
        config: Optional[CrossPostConfig] = None,
        transcoder: Optional[ITranscoder] = None,
        on_warning: Optional[Callable[[str], None]] = None,
    ):
        self._config = config or CrossPostConfig()
        self._transcoder = transcoder
        self._on_warning = on_warning
        self._work_dir: Optional[Path] = None

    @property
    def work_dir(self) -> Path:
        if self._work_dir is None:
            if self._config.work_dir is not None:
                self._work_dir = Path(self._config.work_dir)
                self._work_dir.mkdir(parents=True, exist_ok=True)
            else:
                self._work_dir = Path(tempfile.mkdtemp(prefix="crosspost-"))
        return self._work_dir

    async def optimize(self, asset: MediaAsset, limit_bytes: int) -> MediaAsset:
        """
        Return an asset that fits ``limit_bytes`` when possible.

        Assets already under the limit, or under the minimum transform
        size, are returned unchanged.
        """
        if asset.byte_size <= limit_bytes:
            return asset
        if asset.byte_size < self._config.min_transform_bytes:
            logger.debug("Skipping transform of small file %s", asset.path.name)
            return asset

        if asset.is_video:
            return await self._optimize_video(asset, limit_bytes)
        return await self._optimize_image(asset, limit_bytes)

    async def _optimize_image(self, asset: MediaAsset, limit_bytes: int) -> MediaAsset:
        if asset.mime_type == "image/gif":
            # Re-encoding would drop the animation
            return asset

        best = asset
        for max_side, quality in IMAGE_LADDER:
            dest = self.work_dir / f"{asset.path.stem}-{max_side}q{quality}.jpg"
            try:
                width, height = await asyncio.to_thread(
                    _resize_image, asset.path, dest, max_side, quality
                )
                result = asset.derive(dest, mime_type="image/jpeg", width=width, height=height)
            except Exception as e:
                logger.warning(f"Image pass {max_side}px/q{quality} failed for {asset.path.name}: {e}")
                return best

            logger.info(
                f"Image pass {max_side}px/q{quality}: {asset.path.name} "
                f"{asset.byte_size} -> {result.byte_size} bytes"
            )
            if result.byte_size < best.byte_size:
                best = result
            if result.byte_size <= limit_bytes:
                return result

        return best

    async def _optimize_video(self, asset: MediaAsset, limit_bytes: int) -> MediaAsset:
        if self._transcoder is None or not self._transcoder.available():
            logger.info("No video transcoder available, passing %s through", asset.path.name)
            return asset

        max_side, bitrate = video_profile(asset)
        attempts = (bitrate, int(bitrate * FALLBACK_BITRATE_RATIO))

        best = asset
        for attempt_bitrate in attempts:
            dest = self.work_dir / f"{asset.path.stem}-{max_side}-{attempt_bitrate // 1000}k.mp4"
            try:
                result = await self._transcoder.transcode(asset, dest, max_side, attempt_bitrate)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if best is asset:
                    self._warn(f"Video compression failed, uploading the original: {e}")
                    return asset
                logger.warning(f"Video transcode at {attempt_bitrate} bit/s failed: {e}")
                break

            logger.info(
                f"Video pass {max_side}px/{attempt_bitrate // 1000}k: "
                f"{asset.byte_size} -> {result.byte_size} bytes"
            )
            if result.byte_size < best.byte_size:
                best = result
            if result.byte_size <= limit_bytes:
                return result

        self._warn(
            f"Video is still {best.byte_size / (1024 * 1024):.1f} MB after compression, "
            f"over the {limit_bytes / (1024 * 1024):.0f} MB limit"
        )
        return best

    def _warn(self, message: str) -> None:
        logger.warning(message)
        if self._on_warning:
            try:
                self._on_warning(message)
            except Exception as e:
                logger.error(f"Error in optimizer warning callback: {e}")
