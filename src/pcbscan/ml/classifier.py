"""PCB defect classifier: label set, handle protocol, and arg-max decoding.

The classifier is a single ONNX model that maps a (1, 224, 224, 3) float32
batch to six scores, one per defect class, in the order of DEFECT_CLASSES.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import numpy as np

from pcbscan.ml.errors import InferenceError

if TYPE_CHECKING:
    from numpy.typing import NDArray
    from onnxruntime import InferenceSession

DEFECT_CLASSES: tuple[str, ...] = (
    "Missing_hole",
    "Mouse_bite",
    "Open_circuit",
    "Short",
    "Spur",
    "Spurious_copper",
)

Shape = tuple[int | str | None, ...]


@dataclass(frozen=True)
class Prediction:
    """A single defect prediction."""

    label: str
    confidence: float


class Classifier(Protocol):
    """Protocol for a loaded, ready-to-run defect classifier."""

    @property
    def input_shape(self) -> Shape:
        """Return the model input shape (batch dimension may be symbolic)."""
        ...

    @property
    def output_shape(self) -> Shape:
        """Return the model output shape (batch dimension may be symbolic)."""
        ...

    def predict(self, batch: NDArray[np.float32]) -> NDArray[np.float32]:
        """Run a forward pass.

        Args:
            batch: Preprocessed images, shape (N, 224, 224, 3).

        Returns:
            Scores, shape (N, len(DEFECT_CLASSES)).
        """
        ...


class OnnxClassifier:
    """Classifier backed by an ONNX Runtime InferenceSession."""

    def __init__(self, session: InferenceSession) -> None:
        self._session = session
        model_input = session.get_inputs()[0]
        self._input_name: str = model_input.name
        self._input_shape: Shape = tuple(model_input.shape)
        self._output_shape: Shape = tuple(session.get_outputs()[0].shape)

    @property
    def input_shape(self) -> Shape:
        return self._input_shape

    @property
    def output_shape(self) -> Shape:
        return self._output_shape

    def predict(self, batch: NDArray[np.float32]) -> NDArray[np.float32]:
        outputs = self._session.run(None, {self._input_name: batch})
        return np.asarray(outputs[0], dtype=np.float32)


def decode_prediction(scores: NDArray[np.float32], labels: tuple[str, ...] = DEFECT_CLASSES) -> Prediction:
    """Map a score vector to its highest-scoring label.

    Ties resolve to the lowest index. The confidence is the raw score at
    that index, so a softmax head yields a value in [0, 1].

    Raises:
        InferenceError: If the vector length does not match the label set, or
            the winning score is not a probability (NaN, infinite, or outside
            [0, 1], as with a logit head).
    """
    vector = np.asarray(scores, dtype=np.float32).reshape(-1)
    if vector.shape[0] != len(labels):
        raise InferenceError(f"Model produced {vector.shape[0]} scores, expected {len(labels)}")

    index = int(np.argmax(vector))
    confidence = float(vector[index])
    if not math.isfinite(confidence) or not 0.0 <= confidence <= 1.0:
        raise InferenceError(f"Model produced confidence {confidence} for {labels[index]}, expected a value in [0, 1]")
    return Prediction(label=labels[index], confidence=confidence)
