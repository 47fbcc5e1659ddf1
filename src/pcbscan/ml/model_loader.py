"""Model loader: fetch the classifier artifact once and hand out the shared handle.

The artifact is a JSON manifest plus binary weight shards served over HTTP.
Shards are fetched in manifest order and concatenated into a serialized ONNX
model, which is turned into an ONNX Runtime InferenceSession.

Concurrent callers share a single in-flight load: whoever arrives first
starts it, everyone else awaits the same task and observes the same handle
or the same exception. A failed load resets the loader so a later call can
try again; a successful one is never repeated.
"""

from __future__ import annotations

import asyncio
import logging
from enum import StrEnum
from typing import TYPE_CHECKING, Literal

import httpx
from huggingface_hub import hf_hub_url
from onnxruntime import InferenceSession, SessionOptions
from onnxruntime.capi.onnxruntime_pybind11_state import ExecutionMode
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from pcbscan.ml.classifier import DEFECT_CLASSES, Classifier, OnnxClassifier
from pcbscan.ml.errors import ModelUnavailable

if TYPE_CHECKING:
    from pcbscan.config import Settings
    from pcbscan.ml.inference import InferencePool

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Manifest
# ---------------------------------------------------------------------------


class WeightGroup(BaseModel):
    """One group of weight shards, fetched and concatenated in order."""

    paths: list[str] = Field(min_length=1)


class ModelManifest(BaseModel):
    """The JSON document describing the classifier artifact."""

    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    format: Literal["onnx"]
    generated_by: str | None = Field(default=None, alias="generatedBy")
    weights_manifest: list[WeightGroup] = Field(alias="weightsManifest", min_length=1)
    labels: list[str] | None = None

    @property
    def shard_paths(self) -> list[str]:
        return [path for group in self.weights_manifest for path in group.paths]


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------


class LoadState(StrEnum):
    UNLOADED = "unloaded"
    LOADING = "loading"
    LOADED = "loaded"


def resolve_manifest_url(settings: Settings) -> str:
    """Return the manifest URL, preferring a Hugging Face Hub repo when configured."""
    if settings.model_repo_id:
        return hf_hub_url(
            repo_id=settings.model_repo_id,
            filename=settings.manifest_filename,
            revision=settings.model_revision,
        )
    return settings.model_url


def _consume_exception(task: asyncio.Task[Classifier]) -> None:
    # The failure was already logged in _load; waiters may all have been cancelled.
    if not task.cancelled():
        task.exception()


class ModelLoader:
    """Single-flight owner of the classifier handle."""

    def __init__(
        self,
        settings: Settings,
        pool: InferencePool,
        client: httpx.AsyncClient | None = None,
        labels: tuple[str, ...] = DEFECT_CLASSES,
    ) -> None:
        self._settings = settings
        self._pool = pool
        self._labels = labels
        self._manifest_url = resolve_manifest_url(settings)

        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(None),
            follow_redirects=True,
        )

        self._handle: Classifier | None = None
        self._state = LoadState.UNLOADED
        self._inflight: asyncio.Task[Classifier] | None = None

        self._providers = self._build_providers()
        self._session_options = self._build_session_options()

    # -- Public API ---------------------------------------------------------

    @property
    def state(self) -> LoadState:
        return self._state

    @property
    def manifest_url(self) -> str:
        return self._manifest_url

    @property
    def labels(self) -> tuple[str, ...]:
        return self._labels

    @property
    def handle(self) -> Classifier | None:
        """The loaded classifier, or None before the first successful load."""
        return self._handle

    async def ensure_loaded(self) -> Classifier:
        """Return the classifier, loading it on first use.

        Raises:
            ModelUnavailable: If the manifest or weights cannot be fetched or parsed.
        """
        if self._handle is not None:
            return self._handle

        if self._inflight is None:
            self._state = LoadState.LOADING
            self._inflight = asyncio.ensure_future(self._load())
            self._inflight.add_done_callback(_consume_exception)
        # A cancelled waiter must not abort the load other callers share.
        return await asyncio.shield(self._inflight)

    async def aclose(self) -> None:
        """Close the HTTP client if this loader created it."""
        if self._owns_client:
            await self._client.aclose()

    # -- Internal -----------------------------------------------------------

    async def _load(self) -> Classifier:
        logger.info("Loading classifier from %s", self._manifest_url)
        try:
            manifest = await self._fetch_manifest()
            model_bytes = await self._fetch_weights(manifest)
            handle = self._handle = await self._pool.run(self._build_classifier, model_bytes)
        except ModelUnavailable:
            logger.exception("Failed to load classifier from %s", self._manifest_url)
            raise
        except Exception as exc:
            logger.exception("Unexpected error loading classifier from %s", self._manifest_url)
            raise ModelUnavailable(f"Failed to load classifier: {exc}") from exc
        finally:
            # Also reached on cancellation, which the handlers above let through.
            self._inflight = None
            self._state = LoadState.UNLOADED if self._handle is None else LoadState.LOADED

        logger.info(
            "Classifier loaded (input_shape=%s, output_shape=%s)",
            handle.input_shape,
            handle.output_shape,
        )
        return handle

    async def _fetch_manifest(self) -> ModelManifest:
        url = self._manifest_url
        try:
            exists = await self._client.head(url)
            exists.raise_for_status()
            response = await self._client.get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ModelUnavailable(
                f"Model manifest not available at {url} (HTTP {exc.response.status_code})"
            ) from exc
        except httpx.HTTPError as exc:
            raise ModelUnavailable(f"Could not fetch model manifest from {url}: {exc}") from exc

        try:
            manifest = ModelManifest.model_validate_json(response.content)
        except ValidationError as exc:
            raise ModelUnavailable(f"Malformed model manifest at {url}") from exc

        if manifest.labels is not None and tuple(manifest.labels) != self._labels:
            raise ModelUnavailable(
                f"Model labels {manifest.labels} do not match expected defect classes {list(self._labels)}"
            )
        return manifest

    async def _fetch_weights(self, manifest: ModelManifest) -> bytes:
        base = httpx.URL(self._manifest_url)
        chunks: list[bytes] = []
        for path in manifest.shard_paths:
            shard_url = base.join(path)
            try:
                response = await self._client.get(shard_url)
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                raise ModelUnavailable(
                    f"Weight shard not available at {shard_url} (HTTP {exc.response.status_code})"
                ) from exc
            except httpx.HTTPError as exc:
                raise ModelUnavailable(f"Could not fetch weight shard {shard_url}: {exc}") from exc
            chunks.append(response.content)

        logger.info("Fetched %d weight shard(s), %d bytes", len(chunks), sum(len(c) for c in chunks))
        return b"".join(chunks)

    def _build_classifier(self, model_bytes: bytes) -> Classifier:
        try:
            session = InferenceSession(
                model_bytes,
                sess_options=self._session_options,
                providers=self._providers,
            )
        except Exception as exc:  # noqa: BLE001
            raise ModelUnavailable(f"Weights do not form a valid ONNX model: {exc}") from exc

        classifier = OnnxClassifier(session)
        width = classifier.output_shape[-1] if classifier.output_shape else None
        if isinstance(width, int) and width != len(self._labels):
            raise ModelUnavailable(f"Model outputs {width} classes, expected {len(self._labels)}")
        return classifier

    def _build_providers(self) -> list[str | tuple[str, dict[str, object]]]:
        if self._settings.device == "cuda":
            return [
                ("CUDAExecutionProvider", {"device_id": 0}),
                "CPUExecutionProvider",
            ]
        return ["CPUExecutionProvider"]

    def _build_session_options(self) -> SessionOptions:
        opts = SessionOptions()
        opts.intra_op_num_threads = self._settings.intra_op_threads
        opts.inter_op_num_threads = self._settings.inter_op_threads
        opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL
        opts.enable_mem_pattern = True
        opts.enable_mem_reuse = True
        return opts
