"""Download -> render -> encode workflow."""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from nwpanim.cache import MANIFEST_NAME
from nwpanim.config import STAGE_DIRS, WorkflowConfig, format_cycle_path
from nwpanim.downloader import GribDownloader
from nwpanim.encoder import VideoEncoder
from nwpanim.processor import (
    RENDER_STAGES,
    STAGE_SUFFIXES,
    GribProcessor,
    file_stem,
    find_grib_files,
    sort_by_lead_time,
)
from nwpanim.utils import is_gcs_path

logger = logging.getLogger(__name__)


@dataclass
class WorkflowResult:
    """Artifacts produced by a workflow run."""

    downloaded_files: List[str] = field(default_factory=list)
    frames: List[str] = field(default_factory=list)
    video: Optional[str] = None


class Workflow:
    """Run the stages of a WorkflowConfig in order."""

    def __init__(self, config: WorkflowConfig, max_download_workers: int = 10):
        self.config = config
        self.max_download_workers = max_download_workers

    def run(
        self,
        skip_download: bool = False,
        skip_render: bool = False,
        skip_encode: bool = False,
    ) -> WorkflowResult:
        """
        Run the workflow.

        Skipped steps read their inputs from the stage directories left by a
        previous run.

        Returns:
            WorkflowResult with the produced paths
        """
        config = self.config
        if config.download.cycle is None:
            raise ValueError(
                "Cycle not specified. Provide via --cycle argument, $CYCLE environment variable, or in config file."
            )

        logger.info(f"Starting workflow for cycle: {config.download.cycle}")
        logger.info(f"Product: {config.download.product} {config.download.resolution}")
        logger.info(f"Max lead time: {config.download.max_lead_time}h")
        logger.info(f"Source: {config.download.source}")

        result = WorkflowResult()
        download_dir = config.stage_dir("download")

        if skip_download:
            logger.info("Skipping download step")
        else:
            downloader = GribDownloader(
                config.download,
                download_dir=str(download_dir),
                max_workers=self.max_download_workers,
            )
            if config.download.validate_before_download:
                logger.info("Validating file availability...")
                downloader.validate_availability()  # Raises FileNotFoundError if missing
            result.downloaded_files = downloader.download()
            expected = len(downloader.get_download_manifest())
            if len(result.downloaded_files) < expected:
                raise RuntimeError(
                    f"Downloaded {len(result.downloaded_files)}/{expected} files. See logs for details."
                )

        stage_dirs = {stage: config.stage_dir(stage) for stage in RENDER_STAGES}
        grib_files = list(result.downloaded_files)

        if skip_render:
            logger.info("Skipping render step")
            png_dir = stage_dirs["png"]
            result.frames = sorted_frames(png_dir)
        else:
            grib_files = grib_files or find_grib_files(download_dir)
            processor = GribProcessor(config.render)
            result.frames = processor.render_to(grib_files, stage_dirs)
            logger.info(f"Rendered {len(result.frames)} frames")

        if skip_encode:
            logger.info("Skipping encode step")
        else:
            output = format_cycle_path(config.encode.output, config.download.cycle)
            result.video = VideoEncoder(config.encode).encode(result.frames, output)
            logger.info(f"Created video: {result.video}")

        if config.cleanup_intermediate and result.video:
            self.cleanup(result, grib_files)

        return result

    def cleanup(self, result: WorkflowResult, grib_files: Optional[List[str]] = None) -> None:
        """
        Delete the intermediate files of a run.

        Only GRIB files of the run, the stage outputs derived from them and
        the stage cache manifests are removed, never the video. Stage
        directories are removed once they are empty.

        Args:
            result: Result of the run
            grib_files: GRIB files the frames were rendered from
        """
        grib_files = list(grib_files or result.downloaded_files)
        video = None
        if result.video and not is_gcs_path(result.video):
            video = Path(result.video).resolve()

        stems = {file_stem(path) for path in grib_files + result.frames}
        produced = [Path(path) for path in grib_files]
        for stage in RENDER_STAGES:
            directory = self.config.stage_dir(stage)
            produced.extend(directory / f"{stem}{STAGE_SUFFIXES[stage]}" for stem in sorted(stems))
            produced.append(directory / MANIFEST_NAME)

        deleted = 0
        for path in produced:
            if path.is_file() and path.resolve() != video:
                path.unlink()
                deleted += 1
        logger.info(f"Deleted {deleted} intermediate files")

        for stage in STAGE_DIRS:
            directory = self.config.stage_dir(stage)
            if directory.is_dir() and not any(directory.iterdir()):
                directory.rmdir()
                logger.info(f"Deleted {directory}")

def sorted_frames(png_dir) -> List[str]:
    """PNG frames in a directory ordered by lead time."""
    return sort_by_lead_time([str(p) for p in Path(png_dir).glob("*.png")])
