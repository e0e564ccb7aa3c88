from __future__ import annotations

from pathlib import Path

import pytest

from judgebox.core.config import Settings
from judgebox.services.pipeline import CodeSandbox


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(time_limit_ms=3_000, scratch_root=tmp_path / "scratch")


@pytest.fixture()
def sandbox(settings: Settings) -> CodeSandbox:
    return CodeSandbox(settings)
