"""Pydantic models for the morse-topo API."""

import math

from pydantic import BaseModel, Field, model_validator
from typing import Optional, Literal

from server import config


class CompileRequest(BaseModel):
    script: str = Field(..., description="Scene script source")


class CompileResponse(BaseModel):
    topology: Optional[dict] = None
    node_count: Optional[int] = None
    ring_geometry: Optional[dict] = None
    timings: Optional[dict] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    line: Optional[int] = None


class ValidateRequest(BaseModel):
    script: str = Field(..., description="Scene script source to validate")


class ValidateResponse(BaseModel):
    valid: bool
    node_count: Optional[int] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    line: Optional[int] = None


class EvalRequest(BaseModel):
    topology: dict = Field(..., description="Topology graph in morse.topo.v1 format")
    x: float = Field(0.0, allow_inf_nan=False)
    y: float = Field(0.0, allow_inf_nan=False)
    z: float = Field(0.0, allow_inf_nan=False)


class EvalResponse(BaseModel):
    value: Optional[float] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None


class GradResponse(BaseModel):
    value: Optional[float] = None
    grad: Optional[list[float]] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None


class IntervalRequest(BaseModel):
    topology: dict = Field(..., description="Topology graph in morse.topo.v1 format")
    min: list[float] = Field(..., min_length=3, max_length=3, description="Box corner (x, y, z)")
    max: list[float] = Field(..., min_length=3, max_length=3, description="Opposite box corner")

    @model_validator(mode="after")
    def _ordered(self):
        for lo, hi in zip(self.min, self.max):
            if not (math.isfinite(lo) and math.isfinite(hi)):
                raise ValueError("box corners must be finite")
            if lo > hi:
                raise ValueError("box 'min' must not exceed 'max' on any axis")
        return self


class IntervalResponse(BaseModel):
    lo: Optional[float] = Field(None, description="Lower bound; null when unbounded")
    hi: Optional[float] = Field(None, description="Upper bound; null when unbounded")
    error: Optional[str] = None
    error_kind: Optional[str] = None


class MeshRequest(BaseModel):
    script: Optional[str] = Field(None, description="Scene script to compile and mesh")
    topology: Optional[dict] = Field(None, description="Already compiled topology graph")
    resolution: int = Field(config.DEFAULT_RESOLUTION, ge=2, le=config.MAX_RESOLUTION)
    bounds_min: float = Field(config.DEFAULT_BOUNDS[0], allow_inf_nan=False)
    bounds_max: float = Field(config.DEFAULT_BOUNDS[1], allow_inf_nan=False)
    name: str = Field(config.MESH_NAME, pattern=r"^[A-Za-z0-9_\-]+$")

    @model_validator(mode="after")
    def _one_source(self):
        if (self.script is None) == (self.topology is None):
            raise ValueError("provide exactly one of 'script' or 'topology'")
        if self.bounds_min >= self.bounds_max:
            raise ValueError("bounds_min must be below bounds_max")
        return self


class AnalysisRequest(BaseModel):
    cmd: Literal["glsl", "critical"] = "glsl"
    topology: dict = Field(..., description="Topology graph in morse.topo.v1 format")
    x: float = Field(0.0, allow_inf_nan=False)
    y: float = Field(0.0, allow_inf_nan=False)
    z: float = Field(0.0, allow_inf_nan=False)


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str = ""
    format: str = ""
    analysis: bool = False
