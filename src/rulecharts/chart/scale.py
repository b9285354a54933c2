"""Scale and axis model.

Maps a numeric domain (linear or logarithmic) onto a pixel range and generates
"nice" tick values whose count follows the available pixel span. Degenerate
domains are clamped rather than rejected, so a scale can always be built from
whatever extent the data currently has.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Union

import numpy as np

from rulecharts.utils.logging import get_logger

logger = get_logger(__name__)

_E10 = math.sqrt(50)
_E5 = math.sqrt(10)
_E2 = math.sqrt(2)

DEFAULT_TICK_SPACING = 100.0  # pixels per tick


class ScaleKind(Enum):
    """Axis scale type."""
    LINEAR = "linear"
    LOG = "log"


def _as_kind(kind: Union[ScaleKind, str]) -> ScaleKind:
    return kind if isinstance(kind, ScaleKind) else ScaleKind(str(kind))


def round_upper_bound(v: float) -> float:
    """Round v up to the next integer multiple of its order of magnitude.

    83 -> 90, 7500 -> 8000, 5 -> 10. Values in [1, 10) round to 10. Values
    that have no logarithm (v <= 0) also give 10.
    """
    if not v > 0 or not math.isfinite(v):
        return 10.0
    z = math.floor(math.log10(v))
    if z == 0:
        return 10.0
    mag = 10.0 ** z
    return (math.floor(v / mag) + 1) * mag


def lower_bound(kind: Union[ScaleKind, str], v: float = 0.0) -> float:
    """Lowest value an axis of this kind may start at (linear >= 0, log >= 1)."""
    floor = 1.0 if _as_kind(kind) is ScaleKind.LOG else 0.0
    if not math.isfinite(v):
        return floor
    return max(floor, float(v))


def _tick_spec(start: float, stop: float, count: float) -> tuple[int, int, float]:
    step = (stop - start) / max(0.0, count)
    power = math.floor(math.log10(step))
    error = step / 10.0 ** power
    factor = 10 if error >= _E10 else 5 if error >= _E5 else 2 if error >= _E2 else 1
    if power < 0:
        inc = 10.0 ** -power / factor
        i1 = math.floor(start * inc + 0.5)
        i2 = math.floor(stop * inc + 0.5)
        if i1 / inc < start:
            i1 += 1
        if i2 / inc > stop:
            i2 -= 1
        inc = -inc
    else:
        inc = 10.0 ** power * factor
        i1 = math.floor(start / inc + 0.5)
        i2 = math.floor(stop / inc + 0.5)
        if i1 * inc < start:
            i1 += 1
        if i2 * inc > stop:
            i2 -= 1
    if i2 < i1 and 0.5 <= count < 2:
        return _tick_spec(start, stop, count * 2)
    return i1, i2, inc


def nice_ticks(start: float, stop: float, count: float) -> list[float]:
    """Approximately ``count`` round values (multiples of 1, 2 or 5 x 10^k) in [start, stop]."""
    if not count > 0:
        return []
    if start == stop:
        return [float(start)]
    reverse = stop < start
    lo, hi = (stop, start) if reverse else (start, stop)
    i1, i2, inc = _tick_spec(lo, hi, count)
    if not i2 >= i1:
        return []
    idx = np.arange(i1, i2 + 1, dtype=float)
    ticks = idx / -inc if inc < 0 else idx * inc
    out = [float(t) for t in ticks]
    return out[::-1] if reverse else out


def _log_ticks(start: float, stop: float, count: float) -> list[float]:
    reverse = stop < start
    u, v = (stop, start) if reverse else (start, stop)
    i = math.log10(u)
    j = math.log10(v)
    z: list[float] = []
    if j - i < count:
        for p in range(math.floor(i), math.ceil(j) + 1):
            for k in range(1, 10):
                t = k / 10.0 ** -p if p < 0 else k * 10.0 ** p
                if t < u:
                    continue
                if t > v:
                    break
                z.append(t)
        if len(z) * 2 < count:
            z = nice_ticks(u, v, count)
    else:
        z = [10.0 ** e for e in nice_ticks(i, j, min(j - i, count))]
    return z[::-1] if reverse else z


def is_power_of_ten(value: float) -> bool:
    if not value > 0:
        return False
    e = math.log10(value)
    return abs(e - round(e)) < 1e-9


@dataclass(frozen=True)
class Scale:
    """Immutable coordinate transform from a data domain onto a pixel range.

    Build through make_scale(), which clamps the domain first.
    """
    kind: ScaleKind
    domain: tuple[float, float]
    pixel_range: tuple[float, float]

    def _t(self, v: float) -> float:
        return math.log10(v) if self.kind is ScaleKind.LOG else v

    def forward(self, v: float) -> float:
        """Map a domain value to pixels. Non-positive values under log give NaN."""
        if self.kind is ScaleKind.LOG and not v > 0:
            return math.nan
        d0, d1 = self._t(self.domain[0]), self._t(self.domain[1])
        r0, r1 = self.pixel_range
        return r0 + (self._t(v) - d0) / (d1 - d0) * (r1 - r0)

    __call__ = forward

    def invert(self, px: float) -> float:
        """Map a pixel position back into the domain."""
        d0, d1 = self._t(self.domain[0]), self._t(self.domain[1])
        r0, r1 = self.pixel_range
        if r1 == r0:
            return self.domain[0]
        t = d0 + (px - r0) / (r1 - r0) * (d1 - d0)
        return 10.0 ** t if self.kind is ScaleKind.LOG else t

    @property
    def pixel_span(self) -> float:
        return abs(self.pixel_range[1] - self.pixel_range[0])

    def ticks(
        self,
        spacing: float = DEFAULT_TICK_SPACING,
        *,
        powers_of_ten_only: Optional[bool] = None,
        predicate: Optional[Callable[[float], bool]] = None,
    ) -> list[float]:
        """Nice tick values, about one per ``spacing`` pixels (never fewer than 2 requested).

        Args:
            spacing: Target pixels between ticks.
            powers_of_ten_only: Keep only exact powers of ten. Defaults to True
                for log scales and False for linear ones.
            predicate: Extra filter applied to every tick.
        """
        count = max(2.0, self.pixel_span / spacing) if spacing > 0 else 2.0
        d0, d1 = self.domain
        if self.kind is ScaleKind.LOG:
            ticks = _log_ticks(d0, d1, count)
        else:
            ticks = nice_ticks(d0, d1, count)

        if powers_of_ten_only is None:
            powers_of_ten_only = self.kind is ScaleKind.LOG
        if powers_of_ten_only:
            ticks = [t for t in ticks if is_power_of_ten(t)]
        if predicate is not None:
            ticks = [t for t in ticks if predicate(t)]
        return ticks


def clamp_domain(kind: Union[ScaleKind, str], domain: tuple[float, float]) -> tuple[float, float]:
    """Make a domain usable: positive under log, non-degenerate, finite."""
    kind = _as_kind(kind)
    d0, d1 = (float(domain[0]), float(domain[1]))
    if not math.isfinite(d0):
        d0 = lower_bound(kind)
    if not math.isfinite(d1):
        d1 = round_upper_bound(d0)
    if kind is ScaleKind.LOG:
        d0 = d0 if d0 > 0 else 1.0
        d1 = d1 if d1 > 0 else 1.0
    if d0 == d1:
        logger.debug("degenerate %s domain %r widened", kind.value, domain)
        d1 = d0 * 10.0 if kind is ScaleKind.LOG else d0 + 1.0
    return d0, d1


def make_scale(
    kind: Union[ScaleKind, str],
    domain: tuple[float, float],
    pixel_range: tuple[float, float],
) -> Scale:
    """Build a Scale after clamping the domain.

    Args:
        kind: "linear" or "log".
        domain: (start, end) in data units; may be descending (e.g. a y axis
            drawn top-down).
        pixel_range: (start, end) in pixels.
    """
    kind = _as_kind(kind)
    return Scale(
        kind=kind,
        domain=clamp_domain(kind, domain),
        pixel_range=(float(pixel_range[0]), float(pixel_range[1])),
    )


def _plain(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return f"{value:.12g}"


def format_tick(value: float) -> str:
    """Tick label text (Plotly HTML): plain, 10<sup>k</sup>, or m×10<sup>k</sup>."""
    plain = _plain(value)
    if value < 10 or len(plain) <= 4:
        return plain
    if is_power_of_ten(value):
        return f"10<sup>{round(math.log10(value))}</sup>"
    mantissa, exp = f"{value:.12e}".split("e")
    mantissa = mantissa.rstrip("0").rstrip(".")
    return f"{mantissa}×10<sup>{int(exp)}</sup>"
