from __future__ import annotations

import pytest

from explanation_tree.config import ExplanationConfig
from tests.fakes import FakeLlmClient


@pytest.fixture
def fake_client() -> FakeLlmClient:
    return FakeLlmClient()


@pytest.fixture
def config() -> ExplanationConfig:
    return ExplanationConfig()
