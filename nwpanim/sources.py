"""Data source definitions for GFS products."""

import os
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional
from urllib.parse import urlencode

from nwpanim.config import DownloadConfig


@dataclass
class GribFileSpec:
    """Specification for a single GRIB file."""

    source_path: str
    destination_path: str
    lead_time: int
    forecast_time: datetime


class DataSource:
    """Base class for GFS data sources."""

    # GFS output intervals per resolution, (start, end): interval in hours
    LEAD_TIME_INTERVALS = {
        "0p25": {
            (0, 120): 1,  # 0-120h: hourly
            (120, 240): 3,  # 120-240h: 3-hourly
            (240, 384): 12,  # 240-384h: 12-hourly
        },
        "0p50": {
            (0, 240): 3,
            (240, 384): 12,
        },
        "1p00": {
            (0, 240): 3,
            (240, 384): 12,
        },
    }

    def __init__(self, config: DownloadConfig, download_dir: str):
        if config.cycle is None:
            raise ValueError(
                "Cycle not specified. Provide via --cycle argument, $CYCLE environment variable, or in config file."
            )
        self.config = config
        self.resolution = config.resolution
        self.cycle = config.cycle
        self.max_lead_time = config.max_lead_time
        self.download_dir = download_dir

    @property
    def date_str(self) -> str:
        return self.cycle.strftime("%Y%m%d")

    @property
    def cycle_str(self) -> str:
        return f"{self.cycle.hour:02d}"

    def file_name(self, lead_time: int) -> str:
        """GFS file name for a lead time, e.g. gfs.t00z.pgrb2.0p25.f003."""
        return f"gfs.t{self.cycle_str}z.pgrb2.{self.resolution}.f{lead_time:03d}"

    def source_path(self, lead_time: int) -> str:
        """Remote location of the file for a lead time."""
        raise NotImplementedError

    def get_file_list(self) -> List[GribFileSpec]:
        """Generate list of GRIB files to download."""
        files = []
        for lead_time in self._generate_lead_times():
            files.append(self._file_spec(lead_time))
        return files

    def _file_spec(self, lead_time: int) -> GribFileSpec:
        dest_path = os.path.join(self.download_dir, f"{self.file_name(lead_time)}.grib2")
        return GribFileSpec(
            source_path=self.source_path(lead_time),
            destination_path=dest_path,
            lead_time=lead_time,
            forecast_time=self.cycle + timedelta(hours=lead_time),
        )

    def _all_lead_times(self) -> List[int]:
        """Every lead time the model publishes for this resolution."""
        lead_times = []
        for (start, end), interval in self.LEAD_TIME_INTERVALS[self.resolution].items():
            lead_times.extend(range(start, end + 1, interval))
        return sorted(set(lead_times))

    def _generate_lead_times(self) -> List[int]:
        """Generate lead times up to max_lead_time, thinned by lead_time_step."""
        lead_times = [lt for lt in self._all_lead_times() if lt <= self.max_lead_time]
        step = self.config.lead_time_step
        if step:
            lead_times = [lt for lt in lead_times if lt % step == 0]
        return lead_times

    def get_next_lead_time(self) -> Optional[int]:
        """
        Get the next published lead time after max_lead_time.
        Used to verify the last required file is fully uploaded.

        Returns:
            Next lead time in hours, or None if max_lead_time is the last available
        """
        for lt in self._all_lead_times():
            if lt > self.max_lead_time:
                return lt
        return None

    def next_file_spec(self) -> Optional[GribFileSpec]:
        """File spec of the validation file after max_lead_time, if any."""
        next_lead_time = self.get_next_lead_time()
        if next_lead_time is None:
            return None
        return GribFileSpec(
            source_path=self.source_path(next_lead_time),
            destination_path="",  # Not needed for validation
            lead_time=next_lead_time,
            forecast_time=self.cycle + timedelta(hours=next_lead_time),
        )


class NomadsSource(DataSource):
    """GFS subsets served by the NOMADS grib filter."""

    def build_url(self, lead_time: int) -> str:
        """
        Build the grib filter query for one lead time.

        The query selects the file, each level and variable, the subregion
        and the date/run-hour directory, e.g.:

            https://nomads.ncep.noaa.gov/cgi-bin/filter_gfs_0p25.pl?
            file=gfs.t00z.pgrb2.0p25.f000&lev_entire_atmosphere_...=on&var_PWAT=on
            &subregion=&leftlon=0&rightlon=360&toplat=90&bottomlat=-90
            &dir=/gfs.20240101/00/atmos
        """
        bbox = self.config.bbox
        params = [("file", self.file_name(lead_time))]
        params.extend((f"lev_{level}", "on") for level in self.config.levels)
        params.extend((f"var_{var.upper()}", "on") for var in self.config.variables)
        params.extend(
            [
                ("subregion", ""),
                ("leftlon", _format_coord(bbox.leftlon)),
                ("rightlon", _format_coord(bbox.rightlon)),
                ("toplat", _format_coord(bbox.toplat)),
                ("bottomlat", _format_coord(bbox.bottomlat)),
                ("dir", f"/gfs.{self.date_str}/{self.cycle_str}/atmos"),
            ]
        )
        base_url = self.config.base_url.rstrip("/")
        query = urlencode(params, safe="/()")
        return f"{base_url}/cgi-bin/filter_gfs_{self.resolution}.pl?{query}"

    def source_path(self, lead_time: int) -> str:
        return self.build_url(lead_time)


class BucketSource(DataSource):
    """Full GFS files from the public GCS or AWS mirrors."""

    PROTOCOLS = {"gcs": "gs", "aws": "s3"}

    def source_path(self, lead_time: int) -> str:
        # Path pattern: gfs.YYYYMMDD/HH/atmos/gfs.tHHz.pgrb2.RES.fFFF
        protocol = self.PROTOCOLS[self.config.source]
        return (
            f"{protocol}://{self.config.source_bucket}/gfs.{self.date_str}/{self.cycle_str}/atmos/"
            f"{self.file_name(lead_time)}"
        )


def _format_coord(value: float) -> str:
    """Render 360.0 as '360' and 0.5 as '0.5'."""
    return f"{value:g}"


def create_data_source(config: DownloadConfig, download_dir: str) -> DataSource:
    """Factory function to create appropriate data source."""
    if config.source == "nomads":
        return NomadsSource(config, download_dir)
    elif config.source in BucketSource.PROTOCOLS:
        return BucketSource(config, download_dir)
    else:
        raise ValueError(f"Unknown source: {config.source}")
