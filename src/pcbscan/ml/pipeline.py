"""Defect inference pipeline: bytes in, labelled prediction out.

Order of operations for a single image:
    probe header -> ensure model loaded -> preprocess -> forward pass -> decode

Probing first means a non-image fails before any network traffic; loading
before preprocessing means an unreachable model fails before any pixels are
decoded. Nothing is retried. Header probing, decoding and the forward pass
all run on the inference pool's worker threads.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING

from pcbscan.ml.classifier import Prediction, decode_prediction
from pcbscan.ml.errors import ImageDecodeError, InferenceError, PCBScanError

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence

    import numpy as np
    from numpy.typing import NDArray

    from pcbscan.ml.classifier import Classifier
    from pcbscan.ml.inference import InferencePool
    from pcbscan.ml.model_loader import ModelLoader
    from pcbscan.ml.preprocessing import ImagePreprocessor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BatchInput:
    """One uploaded file awaiting classification."""

    filename: str
    data: bytes
    content_type: str | None = None


@dataclass(frozen=True)
class BatchItem:
    """Outcome for one file of a batch: a prediction or an error, never both."""

    filename: str
    prediction: Prediction | None = None
    error: str | None = None
    detail: str | None = None

    @property
    def ok(self) -> bool:
        return self.prediction is not None


class DefectPipeline:
    """Runs PCB images through the shared classifier."""

    def __init__(
        self,
        loader: ModelLoader,
        preprocessor: ImagePreprocessor,
        pool: InferencePool,
    ) -> None:
        self._loader = loader
        self._preprocessor = preprocessor
        self._pool = pool
        self._live_tensors = 0
        self._tensor_lock = threading.Lock()

    @property
    def loader(self) -> ModelLoader:
        return self._loader

    @property
    def live_tensors(self) -> int:
        """Input/output buffers currently held by an in-progress prediction."""
        with self._tensor_lock:
            return self._live_tensors

    async def load_model(self) -> Classifier:
        """Load the classifier if needed and return it. Idempotent."""
        return await self._loader.ensure_loaded()

    async def predict_defect(self, image_bytes: bytes) -> Prediction:
        """Classify a single PCB image.

        Raises:
            ImageDecodeError: If the bytes are not a decodable image.
            ModelUnavailable: If the classifier cannot be loaded.
            InferenceError: If the forward pass fails or its output is unusable.
        """
        await self._pool.run(self._preprocessor.probe, image_bytes)
        classifier = await self._loader.ensure_loaded()
        tensor = await self._pool.run(self._preprocessor.preprocess, image_bytes)
        with self._held(tensor) as batch:
            try:
                output = await self._pool.run(classifier.predict, batch)
            except Exception as exc:
                raise InferenceError(f"Forward pass failed: {exc}") from exc
            with self._held(output) as scores:
                return decode_prediction(scores, self._loader.labels)

    async def predict_batch(self, items: Sequence[BatchInput]) -> list[BatchItem]:
        """Classify files one at a time, in submission order.

        A failing file is recorded in its BatchItem and does not stop the rest.
        """
        return [await self.predict_item(item) for item in items]

    async def predict_item(self, item: BatchInput) -> BatchItem:
        """Classify one batch file, capturing any failure in the result."""
        try:
            if item.content_type and not item.content_type.startswith("image/"):
                raise ImageDecodeError(f"{item.filename} is not an image file")
            prediction = await self.predict_defect(item.data)
        except PCBScanError as exc:
            logger.warning("Failed to analyze %s: %s", item.filename, exc)
            return BatchItem(filename=item.filename, error=exc.kind, detail=str(exc))

        logger.info("%s: %s (%.3f)", item.filename, prediction.label, prediction.confidence)
        return BatchItem(filename=item.filename, prediction=prediction)

    @contextmanager
    def _held(self, array: NDArray[np.float32]) -> Iterator[NDArray[np.float32]]:
        with self._tensor_lock:
            self._live_tensors += 1
        try:
            yield array
        finally:
            with self._tensor_lock:
                self._live_tensors -= 1
