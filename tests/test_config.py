"""Tests for environment-driven settings."""

from __future__ import annotations

import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from pcbscan.config import get_settings


class TestSettings:
    def test_defaults(self) -> None:
        with patch.dict(os.environ, {}, clear=True):
            settings = get_settings()
        assert settings.model_url == "http://localhost:8000/model/model.json"
        assert settings.model_repo_id is None
        assert settings.max_concurrent == 1
        assert settings.device == "cpu"
        assert settings.api_key is None

    def test_reads_prefixed_environment(self) -> None:
        env = {
            "PCBSCAN_MODEL_URL": "https://cdn.example.com/pcb/model.json",
            "PCBSCAN_DEVICE": "cuda",
            "PCBSCAN_MAX_CONCURRENT": "2",
            "pcbscan_log_level": "DEBUG",
        }
        with patch.dict(os.environ, env, clear=True):
            settings = get_settings()
        assert settings.model_url == "https://cdn.example.com/pcb/model.json"
        assert settings.device == "cuda"
        assert settings.max_concurrent == 2
        assert settings.log_level == "DEBUG"

    @pytest.mark.parametrize(
        ("name", "value"),
        [("PCBSCAN_DEVICE", "openvino"), ("PCBSCAN_MAX_CONCURRENT", "0"), ("PCBSCAN_MAX_FILE_SIZE", "-1")],
    )
    def test_rejects_invalid_values(self, name: str, value: str) -> None:
        with patch.dict(os.environ, {name: value}, clear=True), pytest.raises(ValidationError):
            get_settings()
