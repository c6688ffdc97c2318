from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import List, Optional

from domain.models import AXIS_MAX, AXIS_MIN, Point

_NOISE_DIGITS = 9


@dataclass(frozen=True)
class AxisConfig:
    axis_min: float = AXIS_MIN
    axis_max: float = AXIS_MAX
    tick_resolution: float = 1.0
    major_tick_every: float = 5.0
    pixel_epsilon: float = 1.0
    visible_min: float = 0.0
    visible_max: float = 100.0
    source_hit_radius: float = 10.0
    home_position: float = -1.0
    min_zoom: float = 0.1
    max_zoom: float = 3.0
    zoom_in_factor: float = 1.1
    zoom_out_factor: float = 0.9


@dataclass(frozen=True)
class Tick:
    position: float
    is_major: bool


@dataclass(frozen=True)
class Viewport:
    pan_x: float = 0.0
    pan_y: float = 0.0
    zoom: float = 1.0

    def screen_to_canvas(self, screen_x: float, screen_y: float) -> Point:
        return Point((screen_x - self.pan_x) / self.zoom, (screen_y - self.pan_y) / self.zoom)

    def canvas_to_screen(self, canvas_x: float, canvas_y: float) -> Point:
        return Point(canvas_x * self.zoom + self.pan_x, canvas_y * self.zoom + self.pan_y)

    def pan_to(self, pan_x: float, pan_y: float) -> "Viewport":
        return replace(self, pan_x=pan_x, pan_y=pan_y)


class CoordinateMapper:
    """Maps the logical percentage axis onto canvas pixels and back."""

    def __init__(self, config: AxisConfig | None = None) -> None:
        self.config = config or AxisConfig()

    @property
    def span(self) -> float:
        return self.config.axis_max - self.config.axis_min

    def clamp(self, position: float) -> float:
        return max(self.config.axis_min, min(self.config.axis_max, position))

    def position_to_pixel(self, position: float, canvas_width: float) -> float:
        return (position - self.config.axis_min) / self.span * canvas_width

    def pixel_to_position(self, pixel_x: float, canvas_width: float) -> float:
        if canvas_width <= 0:
            return self.config.axis_min
        return self.clamp(pixel_x / canvas_width * self.span + self.config.axis_min)

    def snap(self, position: float, tick: float | None = None) -> float:
        tick = tick or self.config.tick_resolution
        # Half-way positions snap up, not to the even tick.
        snapped = round(math.floor(position / tick + 0.5) * tick, _NOISE_DIGITS)
        return self.clamp(snapped)

    def ticker_positions(
        self, tick: float | None = None, major_every: float | None = None
    ) -> List[Tick]:
        tick = tick or self.config.tick_resolution
        major_every = major_every or self.config.major_tick_every
        count = int(math.floor(self.span / tick + 1e-9))
        positions = [
            round(self.config.axis_min + idx * tick, _NOISE_DIGITS) for idx in range(count + 1)
        ]
        if positions[-1] < self.config.axis_max:
            positions.append(self.config.axis_max)
        return [Tick(position, _is_multiple(position, major_every)) for position in positions]

    def visible_ticks(self) -> List[Tick]:
        return [
            tick
            for tick in self.ticker_positions()
            if self.config.visible_min <= tick.position <= self.config.visible_max
        ]

    def is_right_of(self, pixel_x: float, reference_x: float) -> bool:
        return pixel_x > reference_x + self.config.pixel_epsilon

    def valid_branch_ticks(self, source_position: float, canvas_width: float) -> List[Tick]:
        source_x = self.position_to_pixel(source_position, canvas_width)
        return [
            tick
            for tick in self.visible_ticks()
            if self.is_right_of(self.position_to_pixel(tick.position, canvas_width), source_x)
        ]

    def resolve_branch_position(
        self,
        source_position: float,
        click_x: float,
        canvas_width: float,
        zoom: float = 1.0,
    ) -> Optional[float]:
        """Snapped axis position for a new stage clicked at ``click_x``, or None.

        ``click_x`` is in canvas pixels (pan and zoom already removed). Clicks at
        or left of the source, or on the source marker itself, are rejected.
        """
        source_x = self.position_to_pixel(source_position, canvas_width)
        if not self.is_right_of(click_x, source_x):
            return None
        if abs(click_x - source_x) < self.config.source_hit_radius / zoom:
            return None

        position = self.snap(self.pixel_to_position(click_x, canvas_width))
        if self.is_right_of(self.position_to_pixel(position, canvas_width), source_x):
            return position

        tick = self.config.tick_resolution
        next_tick = round(math.floor(source_position / tick) * tick + tick, _NOISE_DIGITS)
        position = min(next_tick, self.config.axis_max)
        if self.is_right_of(self.position_to_pixel(position, canvas_width), source_x):
            return position
        return None

    def home_viewport(self, canvas_width: float) -> Viewport:
        return Viewport(
            pan_x=-self.position_to_pixel(self.config.home_position, canvas_width),
            pan_y=0.0,
            zoom=1.0,
        )

    def zoom_at(
        self, viewport: Viewport, screen_x: float, screen_y: float, wheel_delta: float
    ) -> Viewport:
        """Zoom one wheel notch keeping the canvas point under the cursor fixed."""
        factor = self.config.zoom_out_factor if wheel_delta > 0 else self.config.zoom_in_factor
        zoom = max(self.config.min_zoom, min(self.config.max_zoom, viewport.zoom * factor))
        anchor = viewport.screen_to_canvas(screen_x, screen_y)
        return Viewport(
            pan_x=screen_x - anchor.x * zoom,
            pan_y=screen_y - anchor.y * zoom,
            zoom=zoom,
        )

    @staticmethod
    def label_interval(zoom: float) -> float:
        if zoom >= 2:
            return 1.0
        if zoom >= 1.5:
            return 2.0
        if zoom >= 1:
            return 5.0
        if zoom >= 0.5:
            return 10.0
        return 20.0

    def show_label(self, position: float, zoom: float) -> bool:
        return _is_multiple(position, self.label_interval(zoom))


def _is_multiple(value: float, step: float) -> bool:
    ratio = value / step
    return abs(ratio - round(ratio)) < 1e-6
