"""Tests for configuration models."""

from datetime import datetime
from pathlib import Path

import pytest

from nwpanim.config import (
    DownloadConfig,
    EncodeConfig,
    RenderConfig,
    WorkflowConfig,
    format_cycle_path,
)


def test_download_config_valid():
    """Test valid download configuration."""
    config = DownloadConfig(
        resolution="0p25",
        cycle=datetime(2024, 1, 1, 0),  # 00z cycle
        max_lead_time=120,
    )
    assert config.product == "gfs"
    assert config.source == "nomads"
    assert config.variables == ["PWAT"]
    assert config.levels == ["entire_atmosphere_(considered_as_a_single_layer)"]
    assert config.bbox.leftlon == 0
    assert config.bbox.rightlon == 360
    assert config.source_bucket is None


def test_download_config_invalid_cycle():
    """Test cycle hour that is not a GFS run."""
    with pytest.raises(ValueError, match="Cycle hour must be"):
        DownloadConfig(cycle=datetime(2024, 1, 1, 3), max_lead_time=120)


def test_download_config_cycle_not_on_the_hour():
    with pytest.raises(ValueError, match="on the hour"):
        DownloadConfig(cycle=datetime(2024, 1, 1, 6, 30), max_lead_time=120)


def test_download_config_invalid_lead_time():
    """Test invalid lead time for GFS."""
    with pytest.raises(ValueError, match="GFS max lead time"):
        DownloadConfig(cycle=datetime(2024, 1, 1, 0), max_lead_time=500)


def test_download_config_invalid_resolution():
    with pytest.raises(ValueError):
        DownloadConfig(resolution="0p1", max_lead_time=12)


@pytest.mark.parametrize(
    "source, bucket",
    [("gcs", "global-forecast-system"), ("aws", "noaa-gfs-bdp-pds")],
)
def test_download_config_default_bucket(source, bucket):
    config = DownloadConfig(source=source, max_lead_time=12)
    assert config.source_bucket == bucket


def test_download_config_keeps_explicit_bucket():
    config = DownloadConfig(source="gcs", source_bucket="my-mirror", max_lead_time=12)
    assert config.source_bucket == "my-mirror"


def test_download_config_inverted_bbox():
    with pytest.raises(ValueError, match="toplat"):
        DownloadConfig(
            max_lead_time=12,
            bbox={"leftlon": 0, "rightlon": 360, "toplat": -10, "bottomlat": 10},
        )


def test_download_config_empty_variables():
    with pytest.raises(ValueError, match="At least one entry"):
        DownloadConfig(max_lead_time=12, variables=[])


def test_render_config_defaults():
    config = RenderConfig()
    assert config.variable == "pwat"
    assert config.color_ramp == "pwat"
    assert config.color_mode == "interpolate"
    assert config.center_longitude == 0
    assert config.max_workers >= 1


def test_encode_config_crf_range():
    with pytest.raises(ValueError):
        EncodeConfig(crf=60)


def test_encode_config_background():
    with pytest.raises(ValueError, match="background"):
        EncodeConfig(background=[0, 0, 300])


def test_format_cycle_path():
    cycle = datetime(2024, 1, 1, 6)
    assert format_cycle_path("out/{cycle:%Y%m%d}/{cycle:%Hz}.mp4", cycle) == "out/20240101/06z.mp4"
    assert format_cycle_path("out/{cycle:%Y}.mp4", None) == "out/{cycle:%Y}.mp4"
    assert format_cycle_path("plain.mp4", cycle) == "plain.mp4"


def test_workflow_config_stage_dirs():
    """Test stage directories resolve under the formatted work_dir."""
    config = WorkflowConfig(
        download=DownloadConfig(cycle=datetime(2024, 1, 1, 12), max_lead_time=24),
        work_dir="work/{cycle:%Y%m%d%H}",
    )
    assert config.stage_dir("download") == Path("work/2024010112/data_raw")
    assert config.stage_dir("regrid") == Path("work/2024010112/global")
    assert config.stage_dir("geotiff") == Path("work/2024010112/global_tif")
    assert config.stage_dir("color") == Path("work/2024010112/global_color")
    assert config.stage_dir("png") == Path("work/2024010112/global_png")

    with pytest.raises(ValueError, match="Unknown stage"):
        config.stage_dir("video")


def test_workflow_config_custom_download_dir():
    config = WorkflowConfig(
        download=DownloadConfig(
            cycle=datetime(2024, 1, 1, 0),
            max_lead_time=24,
            local_download_dir="/data/gfs/{cycle:%Y%m%d}",
        ),
    )
    assert config.stage_dir("download") == Path("/data/gfs/20240101")


def test_workflow_config_yaml(tmp_path):
    """Test workflow configuration survives a YAML round trip."""
    config = WorkflowConfig(
        download=DownloadConfig(
            cycle=datetime(2024, 1, 1, 0), max_lead_time=48, lead_time_step=6
        ),
        render=RenderConfig(target_resolution=0.5, color_mode="nearest"),
        encode=EncodeConfig(fps=24, crf=18),
        cleanup_intermediate=True,
    )
    path = tmp_path / "config.yaml"
    config.to_yaml(path)

    loaded = WorkflowConfig.from_yaml(path)
    assert loaded.download.cycle == datetime(2024, 1, 1, 0)
    assert loaded.download.lead_time_step == 6
    assert loaded.render.target_resolution == 0.5
    assert loaded.render.color_mode == "nearest"
    assert loaded.encode.fps == 24
    assert loaded.encode.crf == 18
    assert loaded.cleanup_intermediate is True
