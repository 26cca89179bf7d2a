"""Command-line interface for nwpanim."""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

import click

from nwpanim import GribDownloader, GribProcessor, VideoEncoder, Workflow
from nwpanim.config import (
    DownloadConfig,
    EncodeConfig,
    RenderConfig,
    WorkflowConfig,
)

# Default logging configuration (can be overridden by --log-level)
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger(__name__)


def set_log_level(level: str) -> None:
    """Set logging level for all nwpanim loggers."""
    numeric_level = getattr(logging, level.upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {level}")

    # Set root logger level
    logging.getLogger().setLevel(numeric_level)
    # Set nwpanim package logger level
    logging.getLogger("nwpanim").setLevel(numeric_level)


@click.group()
@click.version_option(version="0.1.0")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="INFO",
    envvar="LOG_LEVEL",
    help="Set logging level. Reads from $LOG_LEVEL if not provided.",
)
@click.pass_context
def main(ctx, log_level: str):
    """NWPANIM - Turn GFS forecast fields into colorized animations."""
    set_log_level(log_level)
    ctx.ensure_object(dict)
    ctx.obj["log_level"] = log_level


@main.command()
@click.option(
    "--resolution",
    type=click.Choice(["0p25", "0p50", "1p00"]),
    default="0p25",
    help="Model resolution (e.g., 0p25 for 0.25 degrees)",
)
@click.option(
    "--cycle",
    type=str,
    required=True,
    envvar="CYCLE",
    help="Forecast initialization time/cycle (ISO format: YYYY-MM-DDTHH:MM:SS, hour must be 0, 6, 12, or 18)",
)
@click.option(
    "--max-lead-time",
    type=int,
    required=True,
    help="Maximum lead time in hours",
)
@click.option(
    "--lead-time-step",
    type=int,
    default=None,
    help="Keep only lead times that are a multiple of this many hours",
)
@click.option(
    "--source",
    type=click.Choice(["nomads", "gcs", "aws"]),
    default="nomads",
    help="NOMADS grib filter or a public cloud mirror",
)
@click.option(
    "--var",
    "variables",
    type=str,
    default="PWAT",
    help="Comma-separated GRIB variables for the NOMADS filter",
)
@click.option(
    "--output-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=Path("data_raw"),
    help="Local directory for downloaded files",
)
@click.option(
    "--overwrite",
    is_flag=True,
    help="Overwrite existing files",
)
@click.option(
    "--max-workers",
    type=int,
    default=10,
    help="Maximum number of parallel download workers",
)
@click.option(
    "--dry-run",
    is_flag=True,
    help="Show what would be downloaded without actually downloading",
)
@click.option(
    "--skip-validation",
    is_flag=True,
    help="Start downloading without checking that every file is published",
)
def download(
    resolution: str,
    cycle: str,
    max_lead_time: int,
    lead_time_step: Optional[int],
    source: str,
    variables: str,
    output_dir: Path,
    overwrite: bool,
    max_workers: int,
    dry_run: bool,
    skip_validation: bool,
):
    """Download GFS GRIB2 files."""
    try:
        config = DownloadConfig(
            resolution=resolution,
            cycle=datetime.fromisoformat(cycle),
            max_lead_time=max_lead_time,
            lead_time_step=lead_time_step,
            source=source,
            variables=[v.strip() for v in variables.split(",") if v.strip()],
            local_download_dir=str(output_dir),
            overwrite=overwrite,
            validate_before_download=not skip_validation,
        )

        downloader = GribDownloader(config, max_workers=max_workers)

        if dry_run:
            # Show manifest without downloading
            manifest = downloader.get_download_manifest()
            click.echo(f"\nWould download {len(manifest)} files:")
            for item in manifest[:10]:  # Show first 10
                click.echo(f"  {item['source_path']} -> {item['destination_path']}")
            if len(manifest) > 10:
                click.echo(f"  ... and {len(manifest) - 10} more files")
        else:
            if config.validate_before_download:
                logger.info("Validating file availability...")
                downloader.validate_availability()  # Raises FileNotFoundError if missing

            downloaded_files = downloader.download()
            expected = len(downloader.get_download_manifest())
            if len(downloaded_files) < expected:
                raise RuntimeError(
                    f"Downloaded {len(downloaded_files)}/{expected} files. See logs for details."
                )
            click.echo(f"\nSuccessfully downloaded {len(downloaded_files)} files")

            verification = downloader.verify_downloads(downloaded_files)
            click.echo(
                f"Verification: {verification['exists']}/{verification['total']} files exist"
            )

    except Exception as e:
        logger.error(f"Download failed: {e}")
        sys.exit(1)


@main.command()
@click.option(
    "--grib-path",
    type=click.Path(exists=True, path_type=Path),
    required=True,
    help="GRIB file or directory of GRIB files",
)
@click.option(
    "--work-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=Path("."),
    help="Directory receiving the global/, global_tif/, global_color/ and global_png/ stage directories",
)
@click.option(
    "--variable",
    type=str,
    default="pwat",
    help="cfgrib short name of the field to render",
)
@click.option(
    "--ramp",
    type=str,
    default="pwat",
    help="Built-in ramp name or path to a 'value R G B [A]' file",
)
@click.option(
    "--color-mode",
    type=click.Choice(["interpolate", "exact", "nearest"]),
    default="interpolate",
    help="How values between ramp entries are colored",
)
@click.option(
    "--resolution",
    "target_resolution",
    type=float,
    default=None,
    help="Output grid spacing in degrees (keeps the source grid if omitted)",
)
@click.option(
    "--center-longitude",
    type=click.Choice(["0", "180"]),
    default="0",
    help="0 for -180..180 longitudes, 180 for 0..360",
)
@click.option(
    "--max-workers",
    type=int,
    default=None,
    help="Maximum number of files rendered in parallel (default: CPU count)",
)
@click.option(
    "--inspect",
    is_flag=True,
    help="Inspect the first GRIB file without rendering",
)
def render(
    grib_path: Path,
    work_dir: Path,
    variable: str,
    ramp: str,
    color_mode: str,
    target_resolution: Optional[float],
    center_longitude: str,
    max_workers: Optional[int],
    inspect: bool,
):
    """Render GRIB files into colorized PNG frames."""
    try:
        from nwpanim.processor import find_grib_files

        options = dict(
            variable=variable,
            color_ramp=ramp,
            color_mode=color_mode,
            target_resolution=target_resolution,
            center_longitude=int(center_longitude),
        )
        if max_workers:
            options["max_workers"] = max_workers
        processor = GribProcessor(RenderConfig(**options))

        grib_files = find_grib_files(grib_path)
        if inspect:
            if not grib_files:
                raise click.ClickException(f"No GRIB files found at {grib_path}")
            metadata = processor.inspect_grib_file(grib_files[0])
            click.echo("\nGRIB File Metadata:")
            click.echo(f"  Number of files: {len(grib_files)}")
            click.echo(f"  Variables: {', '.join(metadata['variables'])}")
            click.echo(f"  Dimensions: {metadata['dimensions']}")
            click.echo(f"  Sample file: {metadata['file']}")
        else:
            frames = processor.render_all(grib_files, work_dir)
            click.echo(f"\nRendered {len(frames)} frames")

    except Exception as e:
        logger.error(f"Rendering failed: {e}")
        sys.exit(1)


@main.command()
@click.argument("tif_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("output", type=click.Path(dir_okay=False, path_type=Path))
@click.option(
    "--ramp",
    type=str,
    default="pwat",
    help="Built-in ramp name or path to a 'value R G B [A]' file",
)
@click.option(
    "--color-mode",
    type=click.Choice(["interpolate", "exact", "nearest"]),
    default="interpolate",
    help="How values between ramp entries are colored",
)
@click.option(
    "--png",
    is_flag=True,
    help="Write PNG instead of an RGBA GeoTIFF",
)
def colorize(tif_path: Path, output: Path, ramp: str, color_mode: str, png: bool):
    """Colorize a single-band GeoTIFF with a color ramp."""
    try:
        processor = GribProcessor(RenderConfig(color_ramp=ramp, color_mode=color_mode))
        output.parent.mkdir(parents=True, exist_ok=True)
        if png:
            color_path = output.with_name(output.name + ".tif")
            processor.colorize(tif_path, color_path)
            processor.to_png(color_path, output)
            color_path.unlink()
        else:
            processor.colorize(tif_path, output)
        click.echo(f"Wrote {output}")

    except Exception as e:
        logger.error(f"Colorize failed: {e}")
        sys.exit(1)


@main.command()
@click.option(
    "--frames",
    "frames_dir",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    required=True,
    help="Directory of PNG frames",
)
@click.option(
    "--output",
    type=str,
    required=True,
    help="Output video path (local or gs://)",
)
@click.option("--fps", type=int, default=10, help="Frame rate (ffmpeg -r)")
@click.option("--codec", type=str, default="libx264", help="Video codec (ffmpeg -c:v)")
@click.option("--crf", type=int, default=23, help="Constant rate factor (ffmpeg -crf)")
@click.option("--pix-fmt", type=str, default="yuv420p", help="Pixel format (ffmpeg -pix_fmt)")
@click.option(
    "--vf",
    "video_filter",
    type=str,
    default="scale=trunc(iw/2)*2:trunc(ih/2)*2",
    help="Video filter graph (ffmpeg -vf)",
)
def encode(
    frames_dir: Path,
    output: str,
    fps: int,
    codec: str,
    crf: int,
    pix_fmt: str,
    video_filter: str,
):
    """Encode PNG frames into a video, ordered by lead time."""
    try:
        from nwpanim.workflow import sorted_frames

        config = EncodeConfig(
            output=output,
            fps=fps,
            codec=codec,
            crf=crf,
            pix_fmt=pix_fmt,
            video_filter=video_filter or None,
        )
        frames = sorted_frames(frames_dir)
        video = VideoEncoder(config).encode(frames, output)
        click.echo(f"\nEncoded {len(frames)} frames into {video}")

    except Exception as e:
        logger.error(f"Encoding failed: {e}")
        sys.exit(1)


@main.command()
@click.option(
    "--config",
    type=click.Path(exists=True, path_type=Path),
    envvar="CONFIG",
    help="Path to YAML configuration file. Reads from $CONFIG if not provided.",
)
@click.option(
    "--cycle",
    type=str,
    envvar="CYCLE",
    help="Forecast cycle (ISO format: YYYY-MM-DDTHH:MM:SS). Reads from $CYCLE if not provided. Overrides config file.",
)
@click.option(
    "--skip-download",
    is_flag=True,
    help="Skip download step",
)
@click.option(
    "--skip-render",
    is_flag=True,
    help="Skip render step (reuse existing PNG frames)",
)
@click.option(
    "--skip-encode",
    is_flag=True,
    help="Skip encode step",
)
@click.option(
    "--max-workers",
    type=int,
    default=10,
    help="Maximum number of parallel download workers",
)
def run(
    config: Path,
    cycle: str,
    skip_download: bool,
    skip_render: bool,
    skip_encode: bool,
    max_workers: int,
):
    """Run complete workflow from configuration file."""
    try:
        if config is None:
            raise click.ClickException(
                "Config file not specified. Provide via --config argument or $CONFIG environment variable."
            )

        workflow_config = WorkflowConfig.from_yaml(config)

        # CLI/env cycle overrides the config file
        if cycle:
            workflow_config.download = DownloadConfig(
                **{
                    **workflow_config.download.model_dump(),
                    "cycle": datetime.fromisoformat(cycle),
                }
            )
        elif workflow_config.download.cycle is None:
            raise click.ClickException(
                "Cycle not specified. Provide via --cycle argument, $CYCLE environment variable, or in config file."
            )

        result = Workflow(workflow_config, max_download_workers=max_workers).run(
            skip_download=skip_download,
            skip_render=skip_render,
            skip_encode=skip_encode,
        )

        click.echo(f"Downloaded {len(result.downloaded_files)} files")
        click.echo(f"Rendered {len(result.frames)} frames")
        if result.video:
            click.echo(f"Created video: {result.video}")
        click.echo("=== Workflow Complete ===")

    except Exception as e:
        logger.error(f"Workflow failed: {e}")
        sys.exit(1)


@main.command()
@click.option(
    "--resolution",
    type=click.Choice(["0p25", "0p50", "1p00"]),
    default="0p25",
    help="Model resolution",
)
@click.option(
    "--output",
    type=click.Path(path_type=Path),
    default=Path("config.yaml"),
    help="Output configuration file path",
)
def init_config(resolution: str, output: Path):
    """Generate a sample configuration file."""
    config = WorkflowConfig(
        download=DownloadConfig(
            resolution=resolution,
            cycle=datetime(2024, 1, 1, 0),
            max_lead_time=120,
            lead_time_step=3,
        ),
        render=RenderConfig(target_resolution=0.5, max_workers=4),
        encode=EncodeConfig(output="pwat_{cycle:%Y%m%d%H}.mp4"),
        work_dir="nwpanim-work/{cycle:%Y%m%d%H}",
    )

    config.to_yaml(output)
    click.echo(f"Created sample configuration file: {output}")
    click.echo("\nEdit this file with your specific settings and run:")
    click.echo(f"  nwpanim run --config {output}")


@main.command()
@click.argument("name_or_path", type=str, default="pwat")
@click.option(
    "--list",
    "list_ramps",
    is_flag=True,
    help="List built-in ramps",
)
def ramp(name_or_path: str, list_ramps: bool):
    """Validate and print a color ramp."""
    from nwpanim.ramp import builtin_ramps, load_color_ramp

    if list_ramps:
        for name in builtin_ramps():
            click.echo(name)
        return

    try:
        color_ramp = load_color_ramp(name_or_path)
    except (OSError, ValueError) as e:
        logger.error(f"Invalid color ramp: {e}")
        sys.exit(1)

    click.echo(color_ramp.to_text(), nl=False)


if __name__ == "__main__":
    main()
