# rulecharts/chart/dimensions.py

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ChartDimensions:
    """Viewport size and margins supplied by the renderer, in pixels.

    The bounded area (inside the margins) is what scales map onto.
    """

    width: float = 0.0
    height: float = 0.0
    margin_top: float = 10.0
    margin_right: float = 10.0
    margin_bottom: float = 40.0
    margin_left: float = 75.0

    @property
    def bounded_width(self) -> float:
        return max(self.width - self.margin_left - self.margin_right, 0.0)

    @property
    def bounded_height(self) -> float:
        return max(self.height - self.margin_top - self.margin_bottom, 0.0)

    def x_pixel_range(self) -> tuple[float, float]:
        return 0.0, self.bounded_width

    def y_pixel_range(self) -> tuple[float, float]:
        """Bottom-to-top: domain minimum maps to the bottom edge."""
        return self.bounded_height, 0.0
