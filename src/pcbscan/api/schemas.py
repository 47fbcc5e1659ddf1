"""Pydantic request/response schemas for the PCBScan API."""

from __future__ import annotations

from pydantic import BaseModel, Field


class PredictionResponse(BaseModel):
    """Defect classification for a single image."""

    prediction: str = Field(description="Defect class label")
    confidence: float = Field(ge=0.0, le=1.0, description="Score of the predicted class")


class BatchResult(BaseModel):
    """Outcome for one file of a batch upload."""

    filename: str
    prediction: str | None = None
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    error: str | None = Field(
        default=None,
        description="'image_decode_error', 'model_unavailable', or 'inference_error'",
    )
    detail: str | None = None


class BatchResponse(BaseModel):
    """Results for a batch upload, in submission order."""

    results: list[BatchResult]


class ModelInfo(BaseModel):
    """Classifier artifact and load status."""

    state: str = Field(description="Load state: 'unloaded', 'loading', or 'loaded'")
    manifest_url: str
    labels: list[str]
    input_shape: list[int | str | None] | None = None
    output_shape: list[int | str | None] | None = None


class ClassesResponse(BaseModel):
    """Ordered defect labels, index-aligned with model output."""

    classes: list[str]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    gpu: bool
    model_state: str
    concurrent_requests: int
    queue_depth: int
    live_tensors: int


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
