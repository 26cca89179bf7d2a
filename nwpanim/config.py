"""Configuration models for NWP download, rendering and encoding."""

import os
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

GFS_RESOLUTIONS = ("0p25", "0p50", "1p00")

DEFAULT_BUCKETS = {
    "gcs": "global-forecast-system",
    "aws": "noaa-gfs-bdp-pds",
}

# Working directory layout, one directory per stage
STAGE_DIRS = {
    "download": "data_raw",
    "regrid": "global",
    "geotiff": "global_tif",
    "color": "global_color",
    "png": "global_png",
}


class BoundingBox(BaseModel):
    """Subregion passed to the NOMADS grib filter."""

    leftlon: float = Field(default=0.0, ge=-180.0, le=360.0)
    rightlon: float = Field(default=360.0, ge=-180.0, le=360.0)
    toplat: float = Field(default=90.0, ge=-90.0, le=90.0)
    bottomlat: float = Field(default=-90.0, ge=-90.0, le=90.0)

    @model_validator(mode="after")
    def check_extent(self) -> "BoundingBox":
        """Reject empty or inverted boxes."""
        if self.toplat <= self.bottomlat:
            raise ValueError(
                f"toplat ({self.toplat}) must be greater than bottomlat ({self.bottomlat})"
            )
        if self.leftlon == self.rightlon:
            raise ValueError("leftlon and rightlon must differ")
        return self


class DownloadConfig(BaseModel):
    """Configuration for downloading GFS GRIB2 files."""

    product: Literal["gfs"] = Field(default="gfs", description="NWP product to download")
    resolution: Literal["0p25", "0p50", "1p00"] = Field(
        default="0p25",
        description="Model resolution (e.g., '0p25' for 0.25 degrees)",
    )
    cycle: Optional[datetime] = Field(
        default=None,
        description="Forecast initialization time (cycle). Can be set via CLI --cycle or $CYCLE environment variable.",
    )
    max_lead_time: int = Field(description="Maximum lead time in hours", gt=0)
    lead_time_step: Optional[int] = Field(
        default=None,
        gt=0,
        description="Keep only lead times that are a multiple of this many hours",
    )
    source: Literal["nomads", "gcs", "aws"] = Field(
        default="nomads",
        description="'nomads' uses the NOMADS grib filter (variable/level/bbox subset). "
        "'gcs' and 'aws' copy full GFS files from the public cloud mirrors.",
    )
    variables: List[str] = Field(
        default_factory=lambda: ["PWAT"],
        description="GRIB variable names requested from the NOMADS filter",
    )
    levels: List[str] = Field(
        default_factory=lambda: ["entire_atmosphere_(considered_as_a_single_layer)"],
        description="GRIB level names requested from the NOMADS filter",
    )
    bbox: BoundingBox = Field(
        default_factory=BoundingBox,
        description="Subregion requested from the NOMADS filter",
    )
    base_url: str = Field(
        default="https://nomads.ncep.noaa.gov",
        description="NOMADS server root",
    )
    source_bucket: Optional[str] = Field(
        default=None,
        description="Mirror bucket for 'gcs'/'aws' sources. "
        "GCS: 'global-forecast-system', AWS: 'noaa-gfs-bdp-pds'",
    )
    local_download_dir: Optional[str] = Field(
        default=None,
        description="Local directory to download files to (default: <work_dir>/data_raw)",
    )
    overwrite: bool = Field(default=False, description="Overwrite existing files")
    validate_before_download: bool = Field(
        default=True,
        description="Validate all files are available before starting download. "
        "Raises exception if files are missing (fail fast for retry logic).",
    )
    max_retries: int = Field(
        default=3,
        ge=1,
        description="Maximum number of attempts per file",
    )
    timeout: int = Field(
        default=120,
        gt=0,
        description="Timeout in seconds for a single HTTP request",
    )

    @model_validator(mode="after")
    def set_default_source_bucket(self) -> "DownloadConfig":
        """Set default mirror bucket based on source if not specified."""
        if self.source_bucket is None and self.source in DEFAULT_BUCKETS:
            self.source_bucket = DEFAULT_BUCKETS[self.source]
        return self

    @field_validator("cycle")
    @classmethod
    def validate_cycle(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Validate cycle hour is a GFS run hour."""
        if v is None:
            return v
        if v.hour not in [0, 6, 12, 18]:
            raise ValueError(f"Cycle hour must be 0, 6, 12, or 18, got {v.hour}")
        if v.minute or v.second or v.microsecond:
            raise ValueError(f"Cycle must be on the hour, got {v.isoformat()}")
        return v

    @field_validator("max_lead_time")
    @classmethod
    def validate_lead_time(cls, v: int) -> int:
        """Validate lead time is within product limits."""
        if v > 384:
            raise ValueError(f"GFS max lead time is 384 hours, got {v}")
        return v

    @field_validator("variables", "levels")
    @classmethod
    def validate_not_empty(cls, v: List[str]) -> List[str]:
        if not v:
            raise ValueError("At least one entry is required")
        return v


class RenderConfig(BaseModel):
    """Configuration for turning GRIB2 files into colorized PNG frames."""

    variable: str = Field(
        default="pwat",
        description="cfgrib short name of the field to render",
    )
    filter_by_keys: Optional[Dict[str, object]] = Field(
        default=None,
        description="Additional GRIB key filters (e.g., {'typeOfLevel': 'atmosphereSingleLayer'})",
    )
    target_resolution: Optional[float] = Field(
        default=None,
        gt=0,
        description="Output grid spacing in degrees (bilinear). Keeps the source grid when unset.",
    )
    center_longitude: Literal[0, 180] = Field(
        default=0,
        description="0 for longitudes -180..180, 180 for longitudes 0..360",
    )
    color_ramp: str = Field(
        default="pwat",
        description="Built-in ramp name or path to a 'value R G B [A]' text file",
    )
    color_mode: Literal["interpolate", "exact", "nearest"] = Field(
        default="interpolate",
        description="How values between ramp entries are colored",
    )
    scale_factor: float = Field(
        default=1.0, description="Multiplier applied to the field before colorizing"
    )
    add_offset: float = Field(
        default=0.0, description="Offset added to the field after scaling"
    )
    max_workers: int = Field(
        default_factory=lambda: os.cpu_count() or 1,
        gt=0,
        description="Maximum number of files rendered in parallel",
    )


class EncodeConfig(BaseModel):
    """Configuration for encoding PNG frames into a video."""

    output: str = Field(
        default="pwat.mp4",
        description="Output video path (local or gs://). Supports {cycle:...} placeholders",
    )
    fps: int = Field(default=10, gt=0, description="Frame rate (ffmpeg -r)")
    codec: str = Field(default="libx264", description="Video codec (ffmpeg -c:v)")
    crf: Optional[int] = Field(
        default=23,
        ge=0,
        le=51,
        description="Constant rate factor (ffmpeg -crf). Lower is better quality.",
    )
    pix_fmt: str = Field(default="yuv420p", description="Pixel format (ffmpeg -pix_fmt)")
    video_filter: Optional[str] = Field(
        default="scale=trunc(iw/2)*2:trunc(ih/2)*2",
        description="Video filter graph (ffmpeg -vf). Default rounds the frame size down to even.",
    )
    background: List[int] = Field(
        default_factory=lambda: [0, 0, 0],
        description="RGB color transparent pixels are flattened onto",
    )

    @field_validator("background")
    @classmethod
    def validate_background(cls, v: List[int]) -> List[int]:
        if len(v) != 3 or any(c < 0 or c > 255 for c in v):
            raise ValueError(f"background must be three integers in 0..255, got {v}")
        return v


class WorkflowConfig(BaseModel):
    """Combined configuration for the download, render and encode workflow."""

    download: DownloadConfig = Field(description="Download configuration")
    render: RenderConfig = Field(
        default_factory=RenderConfig, description="Render configuration"
    )
    encode: EncodeConfig = Field(
        default_factory=EncodeConfig, description="Encode configuration"
    )
    work_dir: str = Field(
        default="nwpanim-work",
        description="Root directory holding one sub-directory per stage. Supports {cycle:...} placeholders",
    )
    cleanup_intermediate: bool = Field(
        default=False,
        description="Delete stage directories after the video has been written",
    )

    def stage_dir(self, stage: str) -> Path:
        """
        Return the working directory of a pipeline stage.

        Args:
            stage: One of the keys of STAGE_DIRS

        Returns:
            Directory path under work_dir
        """
        if stage not in STAGE_DIRS:
            raise ValueError(
                f"Unknown stage: {stage}. Available stages: {', '.join(STAGE_DIRS)}"
            )
        if stage == "download" and self.download.local_download_dir:
            return Path(format_cycle_path(self.download.local_download_dir, self.download.cycle))
        root = Path(format_cycle_path(self.work_dir, self.download.cycle))
        return root / STAGE_DIRS[stage]

    @classmethod
    def from_yaml(cls, path: Path) -> "WorkflowConfig":
        """Load configuration from YAML file."""
        import yaml

        with open(path, "r") as f:
            data = yaml.safe_load(f)
        return cls(**data)

    def to_yaml(self, path: Path) -> None:
        """Save configuration to YAML file."""
        import yaml

        with open(path, "w") as f:
            yaml.dump(self.model_dump(mode="json"), f, default_flow_style=False)


def format_cycle_path(path: str, cycle: Optional[datetime]) -> str:
    """
    Replace {cycle:...} placeholders in a path with the formatted cycle.

    Supports Python datetime formatting syntax:
    - {cycle:%Y%m%d} -> 20240101
    - {cycle:%Hz} -> 00z

    Args:
        path: Path template
        cycle: Forecast cycle, or None to leave the template unchanged

    Returns:
        Formatted path
    """
    if "{" not in path or cycle is None:
        return path

    import re

    return re.sub(r"\{cycle:([^}]+)\}", lambda m: cycle.strftime(m.group(1)), path)
