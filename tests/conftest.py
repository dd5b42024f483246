"""Shared test fixtures: isolated settings and working directories."""

import os

# Tests never talk to a real publisher; make sure no ambient token or
# .env override leaks into Settings() created by the code under test.
for _key in [k for k in os.environ if k.startswith("APICONFORM_")]:
    del os.environ[_key]

from pathlib import Path

import pytest

from apiconform.config import Settings
from tests.fakes import write_rulesets


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings pointing every directory into ``tmp_path``."""
    return Settings(
        _env_file=None,  # pyright: ignore[reportCallIssue]
        token="test-token",
        base_url="https://publisher.test/api/am/publisher/v4",
        page_size=2,
        max_concurrency=2,
        retry_attempts=1,
        export_dir=tmp_path / "exports",
        extract_dir=tmp_path / "extracted",
        output_dir=tmp_path / "reports",
        ruleset_dir=write_rulesets(tmp_path / "rulesets"),
    )
