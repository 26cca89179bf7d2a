"""Turn GRIB2 forecast files into georeferenced, colorized PNG frames."""

import logging
import re
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Dict, List, Optional, Union

import numpy as np
import pandas as pd
import rasterio
import xarray as xr
from rasterio.enums import ColorInterp
from rasterio.transform import from_origin
from tqdm import tqdm

from nwpanim.cache import StageCache, stage_key
from nwpanim.config import STAGE_DIRS, RenderConfig
from nwpanim.ramp import ColorRamp, load_color_ramp

logger = logging.getLogger(__name__)

CRS = "EPSG:4326"
RENDER_STAGES = ("regrid", "geotiff", "color", "png")
STAGE_SUFFIXES = {"regrid": ".nc", "geotiff": ".tif", "color": ".tif", "png": ".png"}

_LEAD_TIME_PATTERN = re.compile(r"\.f(\d{3,})")


def lead_time_from_name(path: Union[str, Path]) -> Optional[int]:
    """Extract the forecast hour from a GFS-style name (gfs.t00z.pgrb2.0p25.f042...)."""
    match = _LEAD_TIME_PATTERN.search(Path(path).name)
    return int(match.group(1)) if match else None


def sort_by_lead_time(paths: List[str]) -> List[str]:
    """Order paths by forecast hour, then by name."""
    def key(path):
        lead_time = lead_time_from_name(path)
        return (lead_time if lead_time is not None else float("inf"), Path(path).name)

    return sorted(paths, key=key)


def file_stem(path: Union[str, Path]) -> str:
    """Name of a GRIB file without its GRIB extension."""
    name = Path(path).name
    for ext in (".grib2", ".grb2", ".grib", ".grb"):
        if name.endswith(ext):
            return name[: -len(ext)]
    return name


def find_grib_files(grib_path: Union[str, Path]) -> List[str]:
    """
    Find all GRIB files in a directory, or return the single file given.

    Returns:
        GRIB file paths ordered by lead time
    """
    path = Path(grib_path)
    if path.is_file():
        return [str(path)]
    if not path.is_dir():
        raise FileNotFoundError(
            f"GRIB path does not exist: {grib_path}\n"
            f"Make sure to run the download step first or provide a valid grib path."
        )

    grib_files = []
    # Standard GRIB extensions
    grib_files.extend(path.glob("*.grib*"))
    grib_files.extend(path.glob("*.grb*"))
    # GFS files without extension
    grib_files.extend(path.glob("gfs.*"))
    grib_files = [
        str(f) for f in set(grib_files)
        if f.is_file() and not f.name.endswith((".part", ".idx"))
    ]
    return sort_by_lead_time(grib_files)


class GribProcessor:
    """Regrid, georeference, colorize and rasterize GRIB fields."""

    def __init__(self, config: RenderConfig, ramp: Optional[ColorRamp] = None):
        """
        Initialize processor.

        Args:
            config: Render configuration
            ramp: Color ramp (default: loaded from config.color_ramp)
        """
        self.config = config
        self.ramp = ramp or load_color_ramp(config.color_ramp)

    def load_field(self, grib_path: Union[str, Path]) -> xr.DataArray:
        """
        Load the configured variable from a GRIB file using cfgrib.

        Args:
            grib_path: Path to GRIB file

        Returns:
            2-D DataArray with latitude and longitude dimensions

        Raises:
            KeyError: If the variable is not in the file
            ValueError: If the variable is not a single 2-D field
        """
        backend_kwargs = {"indexpath": ""}  # Disable index caching
        if self.config.filter_by_keys:
            backend_kwargs["filter_by_keys"] = self.config.filter_by_keys

        with xr.open_dataset(
            str(grib_path), engine="cfgrib", backend_kwargs=backend_kwargs
        ) as ds:
            if self.config.variable not in ds.data_vars:
                raise KeyError(
                    f"Variable '{self.config.variable}' not found in {grib_path}. "
                    f"Available: {', '.join(ds.data_vars)}"
                )
            field = ds[self.config.variable].squeeze().load()

        if set(field.dims) != {"latitude", "longitude"}:
            raise ValueError(
                f"Expected a latitude/longitude field for '{self.config.variable}', "
                f"got dimensions {field.dims}. Use filter_by_keys to select one level."
            )
        return field.transpose("latitude", "longitude")

    def regrid(self, field: xr.DataArray) -> xr.DataArray:
        """
        Put a field on a north-up global lat/lon grid.

        Longitudes are wrapped to -180..180 (center_longitude=0) or 0..360
        (center_longitude=180) and sorted ascending, latitudes run north to
        south. With target_resolution set the field is resampled bilinearly
        over the source extent.

        Args:
            field: 2-D field with latitude and longitude coordinates

        Returns:
            Regridded field
        """
        lon = field["longitude"]
        if self.config.center_longitude == 0:
            wrapped = ((lon + 180.0) % 360.0) - 180.0
        else:
            wrapped = lon % 360.0
        field = field.assign_coords(longitude=wrapped).sortby("longitude")

        # 0 and 360 collapse onto the same column
        _, unique_index = np.unique(field["longitude"].values, return_index=True)
        if len(unique_index) != field.sizes["longitude"]:
            field = field.isel(longitude=unique_index)

        field = _join_seam(field)
        field = field.sortby("latitude", ascending=False)

        if self.config.target_resolution:
            res = self.config.target_resolution
            lats = field["latitude"].values
            lons = field["longitude"].values
            new_lats = _axis(lats[0], lats[-1], res)
            new_lons = _axis(lons[0], lons[-1], res)
            logger.debug(
                f"Resampling {field.sizes['latitude']}x{field.sizes['longitude']} to "
                f"{len(new_lats)}x{len(new_lons)}"
            )
            field = field.interp(latitude=new_lats, longitude=new_lons, method="linear")

        return field

    def write_regridded(self, field: xr.DataArray, path: Union[str, Path]) -> None:
        """Write a regridded field to NetCDF."""
        field = field.copy()
        # Drop attributes NetCDF cannot store
        field.attrs = {
            k: v
            for k, v in field.attrs.items()
            if isinstance(v, (str, int, float)) and not isinstance(v, bool)
        }
        name = self.config.variable
        field.to_dataset(name=name).to_netcdf(str(path))

    def read_regridded(self, path: Union[str, Path]) -> xr.DataArray:
        """Read a field written by write_regridded."""
        with xr.open_dataset(str(path)) as ds:
            return ds[self.config.variable].load()

    def to_geotiff(self, field: xr.DataArray, path: Union[str, Path]) -> None:
        """
        Write a field as a single-band float32 GeoTIFF in EPSG:4326.

        Args:
            field: North-up field with ascending longitudes
            path: Output GeoTIFF path
        """
        lats = field["latitude"].values
        lons = field["longitude"].values
        res_x = _spacing(lons, self.config.target_resolution)
        res_y = _spacing(lats, self.config.target_resolution)
        transform = from_origin(lons[0] - res_x / 2, lats[0] + res_y / 2, res_x, res_y)

        data = field.values.astype("float32")
        tags = {"variable": self.config.variable}
        if "units" in field.attrs:
            tags["units"] = str(field.attrs["units"])
        forecast_time = _forecast_time(field)
        if forecast_time is not None:
            tags["forecast_time"] = forecast_time.isoformat()

        with rasterio.open(
            str(path),
            "w",
            driver="GTiff",
            height=data.shape[0],
            width=data.shape[1],
            count=1,
            dtype="float32",
            crs=CRS,
            transform=transform,
            nodata=np.nan,
            compress="deflate",
        ) as dst:
            dst.write(data, 1)
            dst.update_tags(**tags)

    def colorize(self, tif_path: Union[str, Path], out_path: Union[str, Path]) -> None:
        """
        Apply the color ramp to a single-band GeoTIFF.

        Args:
            tif_path: Float GeoTIFF written by to_geotiff
            out_path: Output RGBA GeoTIFF path
        """
        with rasterio.open(str(tif_path)) as src:
            data = src.read(1).astype("float64")
            nodata = src.nodata
            profile = src.profile.copy()
            tags = src.tags()

        if nodata is not None and not np.isnan(nodata):
            data[data == nodata] = np.nan
        data = data * self.config.scale_factor + self.config.add_offset

        rgba = self.ramp.apply(data, mode=self.config.color_mode)

        profile.update(
            count=4,
            dtype="uint8",
            nodata=None,
            photometric="RGB",
            alpha="YES",
            compress="deflate",
        )
        with rasterio.open(str(out_path), "w", **profile) as dst:
            dst.write(rgba)
            dst.colorinterp = [
                ColorInterp.red,
                ColorInterp.green,
                ColorInterp.blue,
                ColorInterp.alpha,
            ]
            dst.update_tags(**tags)

    def to_png(self, color_path: Union[str, Path], png_path: Union[str, Path]) -> None:
        """Convert an RGBA GeoTIFF to PNG."""
        with rasterio.open(str(color_path)) as src:
            data = src.read()
            crs = src.crs
            transform = src.transform

        with rasterio.open(
            str(png_path),
            "w",
            driver="PNG",
            height=data.shape[1],
            width=data.shape[2],
            count=data.shape[0],
            dtype="uint8",
            crs=crs,
            transform=transform,
        ) as dst:
            dst.write(data)

    def stage_params(self) -> Dict[str, dict]:
        """Parameters feeding each stage's cache key."""
        return {
            "regrid": {
                "variable": self.config.variable,
                "filter_by_keys": self.config.filter_by_keys,
                "target_resolution": self.config.target_resolution,
                "center_longitude": self.config.center_longitude,
            },
            "geotiff": {"target_resolution": self.config.target_resolution},
            "color": {
                "ramp": self.ramp.to_text(),
                "mode": self.config.color_mode,
                "scale_factor": self.config.scale_factor,
                "add_offset": self.config.add_offset,
            },
            "png": {},
        }

    def render_file(
        self,
        grib_path: Union[str, Path],
        stage_dirs: Dict[str, Path],
        caches: Optional[Dict[str, StageCache]] = None,
    ) -> str:
        """
        Run regrid -> GeoTIFF -> color -> PNG for one GRIB file.

        Stages whose output is already cached under the same key are skipped.

        Args:
            grib_path: Input GRIB file
            stage_dirs: Directory for each of RENDER_STAGES
            caches: Optional shared caches, one per stage

        Returns:
            Path of the PNG frame
        """
        if caches is None:
            caches = {stage: StageCache(stage_dirs[stage]) for stage in RENDER_STAGES}
        params = self.stage_params()
        stem = file_stem(grib_path)

        outputs = {
            stage: Path(stage_dirs[stage]) / f"{stem}{STAGE_SUFFIXES[stage]}"
            for stage in RENDER_STAGES
        }
        writers = {
            "regrid": lambda src, dst: self.write_regridded(self.regrid(self.load_field(src)), dst),
            "geotiff": lambda src, dst: self.to_geotiff(self.read_regridded(src), dst),
            "color": self.colorize,
            "png": self.to_png,
        }

        source = Path(grib_path)
        for stage in RENDER_STAGES:
            output = outputs[stage]
            key = stage_key(source, params[stage])
            if caches[stage].is_fresh(output, key):
                logger.debug(f"Cached {stage}: {output}")
            else:
                output.parent.mkdir(parents=True, exist_ok=True)
                try:
                    writers[stage](source, output)
                except Exception:
                    caches[stage].invalidate(output)
                    raise
                caches[stage].record(output, key)
                logger.debug(f"Wrote {stage}: {output}")
            source = output

        return str(outputs["png"])

    def render_all(self, grib_files: List[str], work_dir: Union[str, Path]) -> List[str]:
        """
        Render GRIB files to PNG frames in parallel.

        Args:
            grib_files: Input GRIB files
            work_dir: Root directory holding the stage directories

        Returns:
            PNG paths ordered by lead time

        Raises:
            ValueError: If no GRIB files are given
            RuntimeError: If any file fails to render
        """
        stage_dirs = {stage: Path(work_dir) / STAGE_DIRS[stage] for stage in RENDER_STAGES}
        return self.render_to(grib_files, stage_dirs)

    def render_to(self, grib_files: List[str], stage_dirs: Dict[str, Path]) -> List[str]:
        """Render GRIB files into explicit stage directories."""
        if not grib_files:
            raise ValueError("No GRIB files to render")

        for directory in stage_dirs.values():
            Path(directory).mkdir(parents=True, exist_ok=True)
        caches = {stage: StageCache(stage_dirs[stage]) for stage in RENDER_STAGES}

        logger.info(
            f"Rendering {len(grib_files)} GRIB files with {self.config.max_workers} workers..."
        )
        frames = []
        failed_files = []

        with ThreadPoolExecutor(max_workers=self.config.max_workers) as executor:
            future_to_file = {
                executor.submit(self.render_file, grib_file, stage_dirs, caches): grib_file
                for grib_file in grib_files
            }

            with tqdm(total=len(grib_files), desc="Rendering frames") as pbar:
                for future in as_completed(future_to_file):
                    grib_file = future_to_file[future]
                    try:
                        frames.append(future.result())
                    except Exception as e:
                        failed_files.append((grib_file, str(e)))
                    pbar.update(1)

        if failed_files:
            error_summary = "\n".join([f"  - {f}: {err}" for f, err in failed_files])
            raise RuntimeError(
                f"Failed to render {len(failed_files)}/{len(grib_files)} GRIB files:\n{error_summary}"
            )

        return sort_by_lead_time(frames)

    def inspect_grib_file(self, grib_path: Union[str, Path]) -> dict:
        """
        Inspect a GRIB file and return metadata.

        Returns:
            Dictionary with GRIB file metadata
        """
        with xr.open_dataset(
            str(grib_path), engine="cfgrib", backend_kwargs={"indexpath": ""}
        ) as ds:
            return {
                "file": str(grib_path),
                "variables": list(ds.data_vars),
                "dimensions": dict(ds.sizes),
                "coordinates": list(ds.coords),
            }


def _axis(start: float, stop: float, res: float) -> np.ndarray:
    """Evenly spaced coordinates from start towards stop at the given spacing."""
    count = int(np.floor(abs(stop - start) / res + 1e-9)) + 1
    step = res if stop >= start else -res
    return start + step * np.arange(count)


def _join_seam(field: xr.DataArray) -> xr.DataArray:
    """
    Make a subregion that crosses the wrap seam contiguous.

    Sorting wrapped longitudes splits such a region into two runs
    (e.g. 0, 5, 350, 355). The run before the widest gap is moved to the
    end and shifted by 360 degrees (350, 355, 360, 365).

    Raises:
        ValueError: If the longitudes stay irregular after joining
    """
    lons = field["longitude"].values
    if len(lons) < 3:
        return field

    diffs = np.diff(lons)
    step = diffs.min()
    gap = int(np.argmax(diffs))
    seam_gap = 360.0 - (lons[-1] - lons[0])
    if diffs[gap] > 1.5 * step and diffs[gap] > seam_gap:
        order = np.r_[gap + 1 : len(lons), 0 : gap + 1]
        joined = np.concatenate([lons[gap + 1 :], lons[: gap + 1] + 360.0])
        field = field.isel(longitude=order).assign_coords(longitude=joined)
        lons = joined
        diffs = np.diff(lons)

    if diffs.max() > 1.5 * step:
        raise ValueError(
            f"Longitudes are not contiguous: gap of {diffs.max():g} degrees "
            f"on a {step:g} degree grid"
        )
    return field


def _spacing(coords: np.ndarray, fallback: Optional[float]) -> float:
    """Absolute grid spacing of a regular coordinate axis."""
    if len(coords) > 1:
        return float(abs(coords[-1] - coords[0]) / (len(coords) - 1))
    if fallback:
        return float(fallback)
    raise ValueError("Cannot derive grid spacing from a single coordinate")


def _forecast_time(field: xr.DataArray) -> Optional[pd.Timestamp]:
    """Valid time of a field, if it carries one."""
    for name in ("valid_time", "time"):
        if name in field.coords and field[name].size == 1:
            return pd.Timestamp(field[name].values.reshape(-1)[0])
    return None
