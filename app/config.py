from __future__ import annotations

import os
from pathlib import Path
from typing import ClassVar

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic_settings.sources import PydanticBaseSettingsSource, YamlConfigSettingsSource

from adapters.layout.stacking import LayoutConfig
from domain.models import AXIS_MAX, AXIS_MIN, DEFAULT_COLOR, ROOT_BUDGET
from domain.services.coordinates import AxisConfig
from domain.services.flow_conservation import ConservationConfig

DEFAULT_CONFIG_PATH = Path("config/flow_editor.yaml")


class AxisSettings(BaseModel):
    axis_min: float = AXIS_MIN
    axis_max: float = AXIS_MAX
    tick_resolution: float = Field(default=1.0, gt=0)
    major_tick_every: float = Field(default=5.0, gt=0)
    pixel_epsilon: float = Field(default=1.0, ge=0)
    visible_min: float = 0.0
    visible_max: float = 100.0
    source_hit_radius: float = Field(default=10.0, ge=0)
    min_zoom: float = Field(default=0.1, gt=0)
    max_zoom: float = Field(default=3.0, gt=0)

    @model_validator(mode="after")
    def check_ranges(self) -> "AxisSettings":
        if self.axis_min >= self.axis_max:
            msg = "axis.axis_min must be lower than axis.axis_max"
            raise ValueError(msg)
        if self.visible_min > self.visible_max:
            msg = "axis.visible_min must not exceed axis.visible_max"
            raise ValueError(msg)
        if self.min_zoom > self.max_zoom:
            msg = "axis.min_zoom must not exceed axis.max_zoom"
            raise ValueError(msg)
        return self

    def to_axis_config(self) -> AxisConfig:
        return AxisConfig(
            axis_min=self.axis_min,
            axis_max=self.axis_max,
            tick_resolution=self.tick_resolution,
            major_tick_every=self.major_tick_every,
            pixel_epsilon=self.pixel_epsilon,
            visible_min=self.visible_min,
            visible_max=self.visible_max,
            source_hit_radius=self.source_hit_radius,
            min_zoom=self.min_zoom,
            max_zoom=self.max_zoom,
        )


class LayoutSettings(BaseModel):
    min_flow_width: float = Field(default=5.0, ge=0)
    height_scale: float = Field(default=2.0, gt=0)
    flow_spacing: float = Field(default=2.0, ge=0)
    min_marker_height: float = Field(default=120.0, gt=0)
    marker_width: float = Field(default=10.0, gt=0)
    canvas_width: float = Field(default=12000.0, gt=0)
    canvas_height: float = Field(default=800.0, gt=0)

    def to_layout_config(self) -> LayoutConfig:
        return LayoutConfig(
            min_flow_width=self.min_flow_width,
            height_scale=self.height_scale,
            flow_spacing=self.flow_spacing,
            min_marker_height=self.min_marker_height,
            marker_width=self.marker_width,
            canvas_width=self.canvas_width,
            canvas_height=self.canvas_height,
        )


class EngineSettings(BaseModel):
    epsilon: float = Field(default=0.01, gt=0)
    min_flow_value: float = Field(default=0.01, gt=0)
    root_budget: float = Field(default=ROOT_BUDGET, gt=0)
    default_flow_color: str = DEFAULT_COLOR
    default_stage_color: str = DEFAULT_COLOR

    def to_engine_config(self, axis: AxisSettings | None = None) -> ConservationConfig:
        axis = axis or AxisSettings()
        return ConservationConfig(
            epsilon=self.epsilon,
            min_flow_value=self.min_flow_value,
            root_budget=self.root_budget,
            default_flow_color=self.default_flow_color,
            default_stage_color=self.default_stage_color,
            axis_min=axis.axis_min,
            axis_max=axis.axis_max,
        )


class StorageSettings(BaseModel):
    graph_path: Path = Path("data/flow_graph.json")


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="FLOW_", env_nested_delimiter="__")

    axis: AxisSettings = AxisSettings()
    layout: LayoutSettings = LayoutSettings()
    engine: EngineSettings = EngineSettings()
    storage: StorageSettings = StorageSettings()

    _yaml_path: ClassVar[Path | None] = None

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        sources: list[PydanticBaseSettingsSource] = [
            init_settings,
            env_settings,
            dotenv_settings,
            file_secret_settings,
        ]
        if cls._yaml_path:
            sources.append(YamlConfigSettingsSource(settings_cls, yaml_file=cls._yaml_path))
        return tuple(sources)


def load_settings(config_path: Path | None = None) -> AppSettings:
    env_path = os.getenv("FLOW_CONFIG_PATH")
    resolved_path: Path | None = None

    if config_path is not None:
        resolved_path = config_path
    elif env_path:
        resolved_path = Path(env_path)
    elif DEFAULT_CONFIG_PATH.exists():
        resolved_path = DEFAULT_CONFIG_PATH

    previous = AppSettings._yaml_path
    try:
        if resolved_path is not None:
            if not resolved_path.exists():
                msg = f"Config file not found: {resolved_path}"
                raise FileNotFoundError(msg)
            AppSettings._yaml_path = resolved_path
        return AppSettings()
    finally:
        AppSettings._yaml_path = previous
