"""Shared fixtures: synthetic images, a fake classifier, and a fake artifact server."""

from __future__ import annotations

import io
import json
from dataclasses import dataclass, field
from typing import TYPE_CHECKING
from unittest.mock import MagicMock

import httpx
import numpy as np
import pytest
from PIL import Image

from pcbscan.config import Settings
from pcbscan.ml.classifier import DEFECT_CLASSES
from pcbscan.ml.inference import InferencePool

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

    from numpy.typing import NDArray

MANIFEST_URL = "http://artifacts.test/model/model.json"


def make_settings(**overrides: object) -> Settings:
    defaults: dict[str, object] = {
        "device": "cpu",
        "model_url": MANIFEST_URL,
        "model_repo_id": None,
        "max_concurrent": 1,
        "intra_op_threads": 0,
        "inter_op_threads": 1,
    }
    defaults.update(overrides)
    return Settings(**defaults)  # type: ignore[arg-type]


def encode_image(
    size: tuple[int, int] = (64, 48),
    color: tuple[int, ...] = (200, 30, 90),
    mode: str = "RGB",
    fmt: str = "PNG",
) -> bytes:
    buffer = io.BytesIO()
    Image.new(mode, size, color).save(buffer, format=fmt)
    return buffer.getvalue()


class FakeClassifier:
    """Deterministic classifier returning a fixed score vector."""

    def __init__(self, scores: list[float] | None = None, error: Exception | None = None) -> None:
        self._scores = np.asarray(scores or [0.05, 0.1, 0.6, 0.1, 0.1, 0.05], dtype=np.float32)
        self._error = error
        self.calls: list[tuple[int, ...]] = []

    @property
    def input_shape(self) -> tuple[int | str | None, ...]:
        return ("N", 224, 224, 3)

    @property
    def output_shape(self) -> tuple[int | str | None, ...]:
        return ("N", len(self._scores))

    def predict(self, batch: NDArray[np.float32]) -> NDArray[np.float32]:
        self.calls.append(batch.shape)
        if self._error is not None:
            raise self._error
        return self._scores.reshape(1, -1)


def fake_session(output_width: int = 6) -> MagicMock:
    """A MagicMock shaped like an onnxruntime InferenceSession."""
    model_input = MagicMock()
    model_input.name = "input_1"
    model_input.shape = ["N", 224, 224, 3]
    model_output = MagicMock()
    model_output.name = "dense"
    model_output.shape = ["N", output_width]

    session = MagicMock()
    session.get_inputs.return_value = [model_input]
    session.get_outputs.return_value = [model_output]
    session.run.return_value = [np.eye(1, output_width, 3, dtype=np.float32)]
    return session


@dataclass
class ArtifactServer:
    """In-memory model artifact host for httpx.MockTransport."""

    manifest: dict[str, object] = field(
        default_factory=lambda: {
            "format": "onnx",
            "weightsManifest": [{"paths": ["group1-shard1of2.bin", "group1-shard2of2.bin"]}],
            "labels": list(DEFECT_CLASSES),
        }
    )
    shards: dict[str, bytes] = field(
        default_factory=lambda: {
            "group1-shard1of2.bin": b"onnx-part-1:",
            "group1-shard2of2.bin": b"onnx-part-2",
        }
    )
    manifest_status: int = 200
    unreachable: bool = False
    requests: list[httpx.Request] = field(default_factory=list)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.unreachable:
            raise httpx.ConnectError("connection refused", request=request)

        if str(request.url) == MANIFEST_URL:
            if self.manifest_status != 200:
                return httpx.Response(self.manifest_status)
            return httpx.Response(200, content=json.dumps(self.manifest).encode())

        name = request.url.path.rsplit("/", 1)[-1]
        if name in self.shards:
            return httpx.Response(200, content=self.shards[name])
        return httpx.Response(404)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def count(self, method: str, suffix: str) -> int:
        return sum(1 for r in self.requests if r.method == method and r.url.path.endswith(suffix))


@pytest.fixture()
def settings() -> Settings:
    return make_settings()


@pytest.fixture()
def pool(settings: Settings) -> Iterator[InferencePool]:
    inference_pool = InferencePool(settings)
    yield inference_pool
    inference_pool.shutdown()


@pytest.fixture()
def artifact_server() -> ArtifactServer:
    return ArtifactServer()


@pytest.fixture()
def png() -> Callable[..., bytes]:
    return encode_image
