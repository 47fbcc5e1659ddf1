"""Failure taxonomy for model loading and inference."""

from __future__ import annotations


class PCBScanError(Exception):
    """Base class for every error surfaced by the inference pipeline."""

    kind: str = "error"


class ModelUnavailable(PCBScanError):
    """Manifest or weights are missing, unreachable, or do not form a valid classifier."""

    kind = "model_unavailable"


class ImageDecodeError(PCBScanError):
    """Input bytes are not a decodable image."""

    kind = "image_decode_error"


class InferenceError(PCBScanError):
    """The forward pass failed or produced unusable output."""

    kind = "inference_error"
