"""Example usage of the nwpanim library."""

from datetime import datetime

from nwpanim import (
    DownloadConfig,
    EncodeConfig,
    GribDownloader,
    GribProcessor,
    RenderConfig,
    VideoEncoder,
    Workflow,
    WorkflowConfig,
)
from nwpanim.config import BoundingBox


def example_download():
    """Example: Download PWAT fields for one GFS cycle from NOMADS."""
    config = DownloadConfig(
        resolution="0p25",
        cycle=datetime(2024, 1, 1, 0),
        max_lead_time=48,
        lead_time_step=3,
        source="nomads",
    )

    downloader = GribDownloader(config, download_dir="data_raw", max_workers=4)

    # Preview what will be downloaded
    manifest = downloader.get_download_manifest()
    print(f"Will download {len(manifest)} files")

    downloaded_files = downloader.download()
    print(f"Downloaded {len(downloaded_files)} files")

    verification = downloader.verify_downloads(downloaded_files)
    print(f"Verified {verification['exists']}/{verification['total']} files")

    return downloaded_files


def example_render_and_encode(grib_files):
    """Example: Render frames with the built-in ramp and encode them."""
    processor = GribProcessor(RenderConfig(target_resolution=0.5, max_workers=4))
    frames = processor.render_all(grib_files, "nwpanim-work")
    print(f"Rendered {len(frames)} frames")

    video = VideoEncoder(EncodeConfig(output="pwat.mp4", fps=12)).encode(frames, "pwat.mp4")
    print(f"Created video: {video}")


def example_regional():
    """Example: Full workflow over the Pacific, subset on the NOMADS server."""
    config = WorkflowConfig(
        download=DownloadConfig(
            cycle=datetime(2024, 1, 1, 12),
            max_lead_time=120,
            lead_time_step=6,
            bbox=BoundingBox(leftlon=120, rightlon=260, toplat=60, bottomlat=-20),
        ),
        render=RenderConfig(center_longitude=180, color_mode="nearest"),
        encode=EncodeConfig(output="pacific_{cycle:%Y%m%d%H}.mp4"),
        work_dir="nwpanim-work/{cycle:%Y%m%d%H}",
    )

    result = Workflow(config).run()
    print(f"Created video: {result.video}")


if __name__ == "__main__":
    print("=== Example 1: Download GFS data ===")
    # files = example_download()

    print("\n=== Example 2: Render and encode ===")
    # example_render_and_encode(files)

    print("\n=== Example 3: Regional workflow ===")
    # example_regional()

    print("\nUncomment the function calls to run the examples")
