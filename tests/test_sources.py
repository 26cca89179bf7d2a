"""Tests for GFS data sources."""

import os
from datetime import datetime

import pytest

from nwpanim.config import DownloadConfig
from nwpanim.sources import BucketSource, NomadsSource, create_data_source


def make_config(**kwargs):
    options = dict(cycle=datetime(2024, 1, 1, 6), max_lead_time=12)
    options.update(kwargs)
    return DownloadConfig(**options)


class TestNomadsSource:
    def test_build_url(self):
        source = NomadsSource(make_config(), "/data")
        url = source.build_url(3)

        assert url.startswith("https://nomads.ncep.noaa.gov/cgi-bin/filter_gfs_0p25.pl?")
        query = url.split("?", 1)[1].split("&")
        assert query == [
            "file=gfs.t06z.pgrb2.0p25.f003",
            "lev_entire_atmosphere_(considered_as_a_single_layer)=on",
            "var_PWAT=on",
            "subregion=",
            "leftlon=0",
            "rightlon=360",
            "toplat=90",
            "bottomlat=-90",
            "dir=/gfs.20240101/06/atmos",
        ]

    def test_build_url_subregion_and_variables(self):
        config = make_config(
            resolution="1p00",
            variables=["pwat", "TMP"],
            levels=["2_m_above_ground"],
            bbox={"leftlon": -130, "rightlon": -60, "toplat": 55.5, "bottomlat": 20},
            base_url="https://example.test/",
        )
        url = NomadsSource(config, "/data").build_url(120)

        assert url.startswith("https://example.test/cgi-bin/filter_gfs_1p00.pl?")
        assert "file=gfs.t06z.pgrb2.1p00.f120" in url
        assert "var_PWAT=on&var_TMP=on" in url
        assert "lev_2_m_above_ground=on" in url
        assert "leftlon=-130&rightlon=-60&toplat=55.5&bottomlat=20" in url

    def test_file_list(self):
        source = NomadsSource(make_config(max_lead_time=3), "/data")
        files = source.get_file_list()

        assert [f.lead_time for f in files] == [0, 1, 2, 3]
        assert files[2].destination_path == os.path.join(
            "/data", "gfs.t06z.pgrb2.0p25.f002.grib2"
        )
        assert files[2].forecast_time == datetime(2024, 1, 1, 8)
        assert files[2].source_path == source.build_url(2)

    def test_missing_cycle(self):
        with pytest.raises(ValueError, match="Cycle not specified"):
            NomadsSource(DownloadConfig(max_lead_time=12), "/data")


class TestLeadTimes:
    def test_hourly_then_three_hourly(self):
        source = NomadsSource(make_config(max_lead_time=126), "/data")
        lead_times = [f.lead_time for f in source.get_file_list()]

        assert lead_times[:3] == [0, 1, 2]
        assert lead_times[-3:] == [120, 123, 126]
        assert 121 not in lead_times
        assert len(lead_times) == 123

    def test_twelve_hourly_tail(self):
        source = NomadsSource(make_config(max_lead_time=384), "/data")
        lead_times = [f.lead_time for f in source.get_file_list()]

        assert lead_times[-3:] == [360, 372, 384]
        assert 243 not in lead_times

    def test_lead_time_step(self):
        source = NomadsSource(make_config(max_lead_time=24, lead_time_step=6), "/data")
        assert [f.lead_time for f in source.get_file_list()] == [0, 6, 12, 18, 24]

    def test_coarse_resolution_is_three_hourly(self):
        source = NomadsSource(make_config(resolution="1p00", max_lead_time=12), "/data")
        assert [f.lead_time for f in source.get_file_list()] == [0, 3, 6, 9, 12]

    @pytest.mark.parametrize(
        "resolution, max_lead_time, expected",
        [
            ("0p25", 5, 6),
            ("0p25", 120, 123),
            ("0p25", 240, 252),
            ("0p25", 384, None),
            ("0p50", 10, 12),
        ],
    )
    def test_next_lead_time(self, resolution, max_lead_time, expected):
        source = NomadsSource(
            make_config(resolution=resolution, max_lead_time=max_lead_time), "/data"
        )
        assert source.get_next_lead_time() == expected

    def test_next_file_spec(self):
        source = NomadsSource(make_config(max_lead_time=3), "/data")
        spec = source.next_file_spec()
        assert spec.lead_time == 4
        assert "f004" in spec.source_path
        assert spec.destination_path == ""


class TestBucketSource:
    def test_gcs_path(self):
        source = create_data_source(make_config(source="gcs"), "/data")
        assert isinstance(source, BucketSource)
        assert source.source_path(0) == (
            "gs://global-forecast-system/gfs.20240101/06/atmos/gfs.t06z.pgrb2.0p25.f000"
        )

    def test_aws_path(self):
        source = create_data_source(make_config(source="aws", resolution="0p50"), "/data")
        assert source.source_path(12) == (
            "s3://noaa-gfs-bdp-pds/gfs.20240101/06/atmos/gfs.t06z.pgrb2.0p50.f012"
        )


def test_create_data_source_nomads():
    assert isinstance(create_data_source(make_config(), "/data"), NomadsSource)


def test_create_data_source_unknown():
    config = make_config().model_copy(update={"source": "ftp"})
    with pytest.raises(ValueError, match="Unknown source"):
        create_data_source(config, "/data")
