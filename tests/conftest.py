"""Shared test fixtures."""

import shutil
import tempfile

import pytest

from TexBrew.config import PipelineConfig

from fakes import FakeRunner


@pytest.fixture
def tmp_dir():
    d = tempfile.mkdtemp()
    yield d
    shutil.rmtree(d, ignore_errors=True)


@pytest.fixture
def default_config():
    return PipelineConfig()


@pytest.fixture
def fake_runner():
    return FakeRunner(echo_input=True)
