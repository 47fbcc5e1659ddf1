"""API route definitions."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, Request, UploadFile, status
from fastapi.responses import JSONResponse

from pcbscan.api.middleware import require_api_key
from pcbscan.api.schemas import (
    BatchResponse,
    BatchResult,
    ClassesResponse,
    ErrorResponse,
    HealthResponse,
    ModelInfo,
    PredictionResponse,
)
from pcbscan.ml.errors import ImageDecodeError, InferenceError, ModelUnavailable, PCBScanError
from pcbscan.ml.pipeline import BatchInput

if TYPE_CHECKING:
    from pcbscan.config import Settings
    from pcbscan.ml.inference import InferencePool
    from pcbscan.ml.model_loader import ModelLoader
    from pcbscan.ml.pipeline import BatchItem, DefectPipeline

router = APIRouter(prefix="/api/v1", dependencies=[Depends(require_api_key)])

HTTP_413_TOO_LARGE = 413
HTTP_422_UNPROCESSABLE = 422

_ERROR_STATUS: dict[type[PCBScanError], int] = {
    ImageDecodeError: HTTP_422_UNPROCESSABLE,
    ModelUnavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
    InferenceError: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_inference_pool(request: Request) -> InferencePool:
    pool: InferencePool = request.app.state.inference_pool
    return pool


def _get_pipeline(request: Request) -> DefectPipeline:
    pipeline: DefectPipeline = request.app.state.pipeline
    return pipeline


def _error_response(exc: PCBScanError) -> JSONResponse:
    return JSONResponse(
        status_code=_ERROR_STATUS.get(type(exc), status.HTTP_500_INTERNAL_SERVER_ERROR),
        content={"detail": str(exc)},
    )


def _model_info(loader: ModelLoader) -> ModelInfo:
    handle = loader.handle
    return ModelInfo(
        state=loader.state.value,
        manifest_url=loader.manifest_url,
        labels=list(loader.labels),
        input_shape=list(handle.input_shape) if handle is not None else None,
        output_shape=list(handle.output_shape) if handle is not None else None,
    )


def _to_result(item: BatchItem) -> BatchResult:
    if item.prediction is None:
        return BatchResult(filename=item.filename, error=item.error, detail=item.detail)
    return BatchResult(
        filename=item.filename,
        prediction=item.prediction.label,
        confidence=item.prediction.confidence,
    )


@router.post(
    "/predict",
    response_model=PredictionResponse,
    responses={
        HTTP_413_TOO_LARGE: {"model": ErrorResponse},
        HTTP_422_UNPROCESSABLE: {"model": ErrorResponse},
        status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
    summary="Classify the defect in a PCB image",
)
async def predict(request: Request, file: UploadFile) -> PredictionResponse | JSONResponse:
    """Classify an uploaded PCB image into one of the six defect classes."""
    settings = _get_settings(request)
    data = await file.read()
    if len(data) > settings.max_file_size:
        return JSONResponse(
            status_code=HTTP_413_TOO_LARGE,
            content={"detail": f"File exceeds {settings.max_file_size} bytes"},
        )

    try:
        result = await _get_pipeline(request).predict_defect(data)
    except PCBScanError as exc:
        return _error_response(exc)
    return PredictionResponse(prediction=result.label, confidence=result.confidence)


@router.post(
    "/predict/batch",
    response_model=BatchResponse,
    summary="Classify several PCB images in submission order",
)
async def predict_batch(request: Request, files: list[UploadFile]) -> BatchResponse:
    """Classify uploaded images one by one; per-file failures are reported inline."""
    settings = _get_settings(request)
    pipeline = _get_pipeline(request)

    results: list[BatchResult] = []
    for index, upload in enumerate(files):
        filename = upload.filename or f"file-{index}"
        # Only the upload being classified is held in memory.
        data = await upload.read()
        if len(data) > settings.max_file_size:
            results.append(
                BatchResult(
                    filename=filename,
                    error="file_too_large",
                    detail=f"File exceeds {settings.max_file_size} bytes",
                )
            )
            continue
        item = BatchInput(filename=filename, data=data, content_type=upload.content_type)
        results.append(_to_result(await pipeline.predict_item(item)))
    return BatchResponse(results=results)


@router.post(
    "/model/load",
    response_model=ModelInfo,
    responses={status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse}},
    summary="Load the classifier if it is not loaded yet",
)
async def load_model(request: Request) -> ModelInfo | JSONResponse:
    """Fetch and initialize the classifier artifact. Idempotent."""
    pipeline = _get_pipeline(request)
    try:
        await pipeline.load_model()
    except ModelUnavailable as exc:
        return _error_response(exc)
    return _model_info(pipeline.loader)


@router.get(
    "/model",
    response_model=ModelInfo,
    summary="Describe the classifier artifact",
)
async def model_info(request: Request) -> ModelInfo:
    """Return the manifest location, label set, and load status."""
    return _model_info(_get_pipeline(request).loader)


@router.get(
    "/classes",
    response_model=ClassesResponse,
    summary="List defect classes",
)
async def list_classes(request: Request) -> ClassesResponse:
    """Return the defect labels in model output order."""
    return ClassesResponse(classes=list(_get_pipeline(request).loader.labels))


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = _get_settings(request)
    pool = _get_inference_pool(request)
    pipeline = _get_pipeline(request)
    return HealthResponse(
        status="ok",
        gpu=settings.device == "cuda",
        model_state=pipeline.loader.state.value,
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
        live_tensors=pipeline.live_tensors,
    )
