"""Color ramps mapping scalar field values to RGBA colors.

A ramp is a text file with one entry per line::

    # value  R   G   B  [A]
    0        255 255 255
    10       0   0   255
    nv       0   0   0   0

Values are in ascending order. ``nv`` sets the color of nodata cells.
Columns may be separated by whitespace or commas.
"""

import logging
import re
from dataclasses import dataclass, field
from importlib import resources
from pathlib import Path
from typing import List, Literal, Tuple, Union

import numpy as np

logger = logging.getLogger(__name__)

Color = Tuple[int, int, int, int]
ColorMode = Literal["interpolate", "exact", "nearest"]

NODATA_KEY = "nv"
TRANSPARENT: Color = (0, 0, 0, 0)


@dataclass
class ColorRamp:
    """Piecewise mapping from data value to RGBA color."""

    values: List[float]
    colors: List[Color]
    nodata_color: Color = field(default=TRANSPARENT)

    def __post_init__(self):
        if not self.values:
            raise ValueError("Color ramp needs at least one value entry")
        if len(self.values) != len(self.colors):
            raise ValueError(
                f"Color ramp has {len(self.values)} values but {len(self.colors)} colors"
            )
        for value in self.values:
            if not np.isfinite(value):
                raise ValueError(f"Color ramp values must be finite, got {value}")
        for previous, current in zip(self.values, self.values[1:]):
            if current < previous:
                raise ValueError(
                    f"Color ramp values must be ascending, got {current} after {previous}"
                )

    @classmethod
    def from_text(cls, text: str) -> "ColorRamp":
        """Parse ramp entries from text."""
        values = []
        colors = []
        nodata_color = TRANSPARENT

        for lineno, raw in enumerate(text.splitlines(), 1):
            line = raw.split("#", 1)[0].strip()
            if not line:
                continue

            parts = [p for p in re.split(r"[\s,]+", line) if p]
            if len(parts) not in (4, 5):
                raise ValueError(
                    f"Line {lineno}: expected 'value R G B [A]', got {raw.strip()!r}"
                )

            color = _parse_color(parts[1:], lineno)
            if parts[0].lower() == NODATA_KEY:
                nodata_color = color
                continue

            try:
                value = float(parts[0])
            except ValueError:
                raise ValueError(f"Line {lineno}: invalid value {parts[0]!r}") from None
            values.append(value)
            colors.append(color)

        return cls(values=values, colors=colors, nodata_color=nodata_color)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "ColorRamp":
        """Load a ramp from a text file."""
        with open(path, "r") as f:
            return cls.from_text(f.read())

    @classmethod
    def builtin(cls, name: str) -> "ColorRamp":
        """Load a ramp shipped with the package."""
        resource = resources.files("nwpanim") / "ramps" / f"{name}.txt"
        if not resource.is_file():
            raise ValueError(
                f"Unknown built-in color ramp: {name}. Available: {', '.join(builtin_ramps())}"
            )
        return cls.from_text(resource.read_text())

    def to_text(self) -> str:
        """Serialize to the ramp file layout."""
        lines = []
        for value, color in zip(self.values, self.colors):
            lines.append(f"{value:g} {_format_color(color)}")
        lines.append(f"{NODATA_KEY} {_format_color(self.nodata_color)}")
        return "\n".join(lines) + "\n"

    def apply(self, data: np.ndarray, mode: ColorMode = "interpolate") -> np.ndarray:
        """
        Colorize a 2-D array.

        Args:
            data: Field values; NaN marks nodata
            mode: 'interpolate' blends neighbouring entries linearly and clamps
                  to the end colors outside the ramp, 'exact' colors only values
                  equal to an entry, 'nearest' uses the closest entry

        Returns:
            uint8 array of shape (4, rows, cols) holding R, G, B, A bands
        """
        data = np.asarray(data, dtype="float64")
        xp = np.asarray(self.values, dtype="float64")
        fp = np.asarray(self.colors, dtype="float64")
        valid = np.isfinite(data)
        filled = np.where(valid, data, xp[0])

        if mode == "interpolate":
            bands = np.stack([np.interp(filled, xp, fp[:, c]) for c in range(4)])
        elif mode in ("exact", "nearest"):
            idx = np.clip(np.searchsorted(xp, filled), 0, len(xp) - 1)
            if mode == "nearest":
                left = np.clip(idx - 1, 0, len(xp) - 1)
                use_left = np.abs(filled - xp[left]) <= np.abs(xp[idx] - filled)
                idx = np.where(use_left, left, idx)
            else:
                valid &= xp[idx] == filled
            bands = np.moveaxis(fp[idx], -1, 0)
        else:
            raise ValueError(f"Unknown color mode: {mode}")

        nodata = np.asarray(self.nodata_color, dtype="float64")[:, None, None]
        bands = np.where(valid[None, ...], bands, nodata)
        return np.clip(np.rint(bands), 0, 255).astype("uint8")


def _parse_color(parts: List[str], lineno: int) -> Color:
    try:
        components = [int(p) for p in parts]
    except ValueError:
        raise ValueError(f"Line {lineno}: color components must be integers") from None
    if any(c < 0 or c > 255 for c in components):
        raise ValueError(f"Line {lineno}: color components must be in 0..255")
    if len(components) == 3:
        components.append(255)
    return tuple(components)


def _format_color(color: Color) -> str:
    return " ".join(str(c) for c in color)


def builtin_ramps() -> List[str]:
    """Names of the ramps shipped with the package."""
    ramps_dir = resources.files("nwpanim") / "ramps"
    return sorted(
        entry.name[: -len(".txt")]
        for entry in ramps_dir.iterdir()
        if entry.name.endswith(".txt")
    )


def load_color_ramp(name_or_path: Union[str, Path]) -> ColorRamp:
    """Load a ramp from a file path, falling back to a built-in name."""
    path = Path(name_or_path)
    if path.is_file():
        logger.debug(f"Loading color ramp from {path}")
        return ColorRamp.from_file(path)
    return ColorRamp.builtin(str(name_or_path))
