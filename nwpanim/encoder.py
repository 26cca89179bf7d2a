"""Encode PNG frames into a video with ffmpeg through imageio."""

import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import List, Sequence, Union

import imageio.v2 as imageio
import numpy as np
from tqdm import tqdm

from nwpanim.config import EncodeConfig
from nwpanim.utils import ensure_local_dir, format_bytes, is_gcs_path, upload_gcs_file

logger = logging.getLogger(__name__)


class VideoEncoder:
    """Encode an ordered list of frames into a video file."""

    def __init__(self, config: EncodeConfig):
        self.config = config

    def build_output_params(self) -> List[str]:
        """Extra ffmpeg output arguments (-crf, -vf)."""
        params = []
        if self.config.crf is not None:
            params.extend(["-crf", str(self.config.crf)])
        if self.config.video_filter:
            params.extend(["-vf", self.config.video_filter])
        return params

    def encode(self, frames: Sequence[Union[str, Path]], output: Union[str, Path]) -> str:
        """
        Encode frames, in the order given, into a video.

        Args:
            frames: Image paths (PNG, RGB or RGBA)
            output: Local path or gs:// URL

        Returns:
            Output path

        Raises:
            ValueError: If there are no frames or frame sizes differ
        """
        if not frames:
            raise ValueError("No frames to encode")

        output = str(output)
        if is_gcs_path(output):
            temp_dir = tempfile.mkdtemp()
            try:
                local_output = Path(temp_dir) / Path(output).name
                self._write(frames, local_output)
                logger.info(f"Uploading video to {output}")
                upload_gcs_file(local_output, output)
            finally:
                shutil.rmtree(temp_dir, ignore_errors=True)
        else:
            local_output = Path(output)
            ensure_local_dir(local_output.parent)
            self._write(frames, local_output)

        return output

    def _write(self, frames: Sequence[Union[str, Path]], output: Path) -> None:
        logger.info(
            f"Writing {len(frames)} frames to {output} "
            f"({self.config.codec}, {self.config.fps} fps, crf={self.config.crf})"
        )
        # The movie only appears at its final path once every frame is written
        partial = output.with_name(f".{output.stem}.partial{output.suffix}")
        shape = None
        try:
            with imageio.get_writer(
                str(partial),
                fps=self.config.fps,
                codec=self.config.codec,
                pixelformat=self.config.pix_fmt,
                ffmpeg_params=self.build_output_params(),
                macro_block_size=1,  # Sizing is left to the -vf filter
            ) as writer:
                for frame_path in tqdm(frames, desc="Encoding frames"):
                    frame = self.to_rgb(imageio.imread(str(frame_path)))
                    if shape is None:
                        shape = frame.shape
                    elif frame.shape != shape:
                        raise ValueError(
                            f"Frame {frame_path} has shape {frame.shape}, expected {shape}"
                        )
                    writer.append_data(frame)
            os.replace(partial, output)
        finally:
            if partial.exists():
                partial.unlink()

        logger.info(f"Wrote {output} ({format_bytes(output.stat().st_size)})")

    def to_rgb(self, image: np.ndarray) -> np.ndarray:
        """Flatten RGBA or grayscale images to RGB uint8 over the background color."""
        image = np.asarray(image)
        if image.ndim == 2:
            image = np.stack([image] * 3, axis=-1)
        if image.shape[-1] == 4:
            alpha = image[..., 3:4].astype("float64") / 255.0
            background = np.asarray(self.config.background, dtype="float64")
            rgb = image[..., :3].astype("float64") * alpha + background * (1.0 - alpha)
            image = np.rint(rgb)
        return image[..., :3].astype("uint8")
