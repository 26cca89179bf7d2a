"""GRIB file downloader from NOMADS and the public cloud mirrors."""

import logging
import os
import shutil
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import List, Optional

import fsspec
from tqdm import tqdm

from nwpanim.config import DownloadConfig
from nwpanim.sources import GribFileSpec, create_data_source
from nwpanim.utils import ensure_local_dir, parse_cloud_path

logger = logging.getLogger(__name__)

GRIB_MAGIC = b"GRIB"


class GribDownloader:
    """Download GFS GRIB2 files to a local directory."""

    def __init__(
        self,
        config: DownloadConfig,
        download_dir: Optional[str] = None,
        max_workers: int = 10,
    ):
        """
        Initialize downloader.

        Args:
            config: Download configuration
            download_dir: Local directory for GRIB files (default: config.local_download_dir)
            max_workers: Maximum number of parallel download workers
        """
        self.config = config
        self.max_workers = max_workers
        self.download_dir = download_dir or config.local_download_dir or "data_raw"
        self.data_source = create_data_source(config, self.download_dir)

    def _filesystem(self, protocol: str):
        """Get the fsspec filesystem for a protocol."""
        if protocol == "s3":
            return fsspec.filesystem("s3", anon=True)  # Anonymous access for public buckets
        elif protocol == "gs":
            return fsspec.filesystem("gs", token="anon")
        else:
            import aiohttp

            return fsspec.filesystem(
                protocol,
                client_kwargs={"timeout": aiohttp.ClientTimeout(total=self.config.timeout)},
            )

    def validate_availability(self) -> None:
        """
        Validate that all required files are available at the source.
        Also checks that the next lead time file exists to ensure the last
        required file is fully published.

        Raises:
            FileNotFoundError: If any required files are missing, with detailed
                             information about which files are missing and available
        """
        file_specs = self.data_source.get_file_list()
        validation_specs = list(file_specs)
        next_spec = self.data_source.next_file_spec()
        if next_spec is not None:
            validation_specs.append(next_spec)

        missing_files = []
        available_files = []

        for spec in validation_specs:
            if self._is_available(spec):
                available_files.append(spec)
            else:
                missing_files.append(spec)

        if missing_files:
            required_missing = [
                s for s in missing_files if s.lead_time <= self.config.max_lead_time
            ]
            validation_missing = [
                s for s in missing_files if s.lead_time > self.config.max_lead_time
            ]

            error_lines = [
                f"\n{'=' * 80}",
                "GRIB FILES NOT READY - Forecast cycle incomplete",
                f"{'=' * 80}",
                f"Source: {self.config.source}",
                f"Cycle: {self.config.cycle.strftime('%Y-%m-%d %H:%M:%S')} UTC",
                f"Resolution: {self.config.resolution}",
                f"Requested lead time: 0-{self.config.max_lead_time}h",
                "",
                "Status:",
                f"  Available: {len(available_files)} files",
                f"  Missing: {len(missing_files)} files",
                "",
            ]

            if required_missing:
                missing_lead_times = sorted(s.lead_time for s in required_missing)
                error_lines.extend(
                    [
                        f"Missing required lead times ({len(missing_lead_times)}):",
                        f"  {missing_lead_times[:20]}{'...' if len(missing_lead_times) > 20 else ''}",
                        "",
                    ]
                )

            if validation_missing:
                error_lines.extend(
                    [
                        "Validation file missing:",
                        f"  Lead time {validation_missing[0].lead_time}h not yet available",
                        f"  (This ensures lead time {self.config.max_lead_time}h is fully published)",
                        "",
                    ]
                )

            error_lines.append(f"{'=' * 80}")
            logger.error("\n".join(error_lines))

            raise FileNotFoundError(
                f"Missing {len(missing_files)} GRIB files for cycle "
                f"{self.config.cycle.strftime('%Y%m%d_%Hz')}. "
                f"Forecast not yet complete. See logs for details."
            )

        logger.info(f"All {len(file_specs)} required files available")

    def _is_available(self, spec: GribFileSpec) -> bool:
        """
        Check whether a source file can be downloaded.

        Bucket objects are checked for existence. The NOMADS filter answers
        missing data with an HTML page and HTTP 200, so HTTP sources are
        opened and must start with the GRIB magic.
        """
        protocol, path = parse_cloud_path(spec.source_path)
        fs = self._filesystem(protocol)
        if protocol not in ("http", "https"):
            return fs.exists(path)

        try:
            with fs.open(path, "rb", block_size=0) as f:  # Stream, read only the header
                head = f.read(len(GRIB_MAGIC))
        except FileNotFoundError:
            return False
        if head != GRIB_MAGIC:
            logger.debug(f"Not GRIB data at {spec.source_path}: {head!r}")
            return False
        return True

    def download(self) -> List[str]:
        """
        Download all GRIB files for the configured forecast.

        Returns:
            List of downloaded file paths, ordered by lead time
        """
        file_specs = self.data_source.get_file_list()
        logger.info(f"Found {len(file_specs)} files to download")
        ensure_local_dir(Path(self.download_dir))

        downloaded = []
        failed_files = []

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            future_to_spec = {
                executor.submit(self._download_file, spec): spec for spec in file_specs
            }

            with tqdm(total=len(file_specs), desc="Downloading GRIB files") as pbar:
                for future in as_completed(future_to_spec):
                    spec = future_to_spec[future]
                    try:
                        downloaded.append((spec.lead_time, future.result()))
                    except Exception as e:
                        logger.error(f"Error downloading {spec.source_path}: {e}")
                        failed_files.append(spec.source_path)
                    finally:
                        pbar.update(1)

        logger.info(f"Successfully downloaded {len(downloaded)} files")
        if failed_files:
            logger.warning(f"Failed to download {len(failed_files)} files")
            for failed in failed_files[:10]:  # Show first 10 failures
                logger.warning(f"  - {failed}")

        return [path for _, path in sorted(downloaded)]

    def _download_file(self, spec: GribFileSpec) -> str:
        """
        Download a single GRIB file with retries.

        Args:
            spec: File specification

        Returns:
            Destination path

        Raises:
            RuntimeError: If every attempt failed
        """
        local_path = Path(spec.destination_path)

        if not self.config.overwrite and _is_complete(local_path):
            logger.debug(f"Skipping existing file: {local_path}")
            return str(local_path)

        ensure_local_dir(local_path.parent)
        part_path = local_path.with_name(local_path.name + ".part")
        protocol, path = parse_cloud_path(spec.source_path)
        max_retries = self.config.max_retries

        for attempt in range(max_retries):
            try:
                fs = self._filesystem(protocol)
                with fs.open(path, "rb") as src:
                    with open(part_path, "wb") as dst:
                        shutil.copyfileobj(src, dst)
                _check_grib(part_path)
                os.replace(part_path, local_path)
                logger.debug(f"Downloaded: {local_path}")
                return str(local_path)
            except Exception as e:
                if part_path.exists():
                    part_path.unlink()
                if attempt < max_retries - 1:
                    # Exponential backoff: 2^attempt seconds
                    wait_time = 2**attempt
                    logger.warning(
                        f"Download failed for {local_path.name} (attempt {attempt + 1}/{max_retries}): {e}. "
                        f"Retrying in {wait_time}s..."
                    )
                    time.sleep(wait_time)
                else:
                    raise RuntimeError(
                        f"Failed to download {spec.source_path} after {max_retries} attempts: {e}"
                    ) from e

        raise RuntimeError(f"Failed to download {spec.source_path}")

    def get_download_manifest(self) -> List[dict]:
        """
        Get manifest of files to be downloaded without actually downloading.

        Returns:
            List of file specifications as dictionaries
        """
        file_specs = self.data_source.get_file_list()
        return [
            {
                "source_path": spec.source_path,
                "destination_path": spec.destination_path,
                "lead_time": spec.lead_time,
                "forecast_time": spec.forecast_time.isoformat(),
            }
            for spec in file_specs
        ]

    def verify_downloads(self, file_paths: List[str]) -> dict:
        """
        Verify that downloaded files exist and start with a GRIB header.

        Args:
            file_paths: List of file paths to verify

        Returns:
            Dictionary with verification results
        """
        results = {"total": len(file_paths), "exists": 0, "missing": []}

        for path in file_paths:
            if _is_complete(Path(path)):
                results["exists"] += 1
            else:
                results["missing"].append(path)

        return results


def _is_complete(path: Path) -> bool:
    """A finished download exists, is non-empty and starts with the GRIB magic."""
    if not path.is_file() or path.stat().st_size == 0:
        return False
    with open(path, "rb") as f:
        return f.read(len(GRIB_MAGIC)) == GRIB_MAGIC


def _check_grib(path: Path) -> None:
    """Reject responses that are not GRIB data (e.g. NOMADS HTML error pages)."""
    with open(path, "rb") as f:
        head = f.read(512)
    if not head.startswith(GRIB_MAGIC):
        snippet = head[:80].decode("utf-8", errors="replace").strip()
        raise ValueError(f"Response is not GRIB data: {snippet!r}")
