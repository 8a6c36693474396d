"""
smoldev - Test Configuration and Fixtures
"""
import logging
import os

import pytest

# Never talk to the real API from tests
os.environ['ANTHROPIC_API_KEY'] = 'test-api-key'

from smoldev.config import PipelineConfig
from smoldev.models import GenerationContext, GenerationTask, DependencyDescriptor
from smoldev.pipeline import PipelineOrchestrator

from mocks.fake_providers import (
    MANIFEST,
    FakeContentGenerator,
    FakeDependencyProvider,
    FakePlanProvider,
    RecordingProgressReporter,
)


@pytest.fixture(autouse=True)
def reset_logging():
    """Drop handlers installed by setup_logging during a test"""
    yield
    logger = logging.getLogger("smoldev")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True


@pytest.fixture
def target_dir(tmp_path):
    """Output directory (not created yet)"""
    return tmp_path / "out"


@pytest.fixture
def config(target_dir) -> PipelineConfig:
    return PipelineConfig(target_dir=str(target_dir), concurrency=2, submit_delay=0)


@pytest.fixture
def plan_provider() -> FakePlanProvider:
    return FakePlanProvider(MANIFEST)


@pytest.fixture
def dependency_provider() -> FakeDependencyProvider:
    return FakeDependencyProvider()


@pytest.fixture
def content_generator() -> FakeContentGenerator:
    return FakeContentGenerator()


@pytest.fixture
def progress() -> RecordingProgressReporter:
    return RecordingProgressReporter()


@pytest.fixture
def orchestrator(config, plan_provider, dependency_provider, content_generator, progress):
    """Orchestrator wired to fake providers"""
    return PipelineOrchestrator(
        config,
        plan_provider,
        dependency_provider,
        content_generator,
        progress=progress,
    )


@pytest.fixture
def make_task(target_dir):
    """Build a GenerationTask for a relative path"""
    def _make(path: str, index: int = 0, total: int = 1) -> GenerationTask:
        context = GenerationContext.build("a todo app", [path], DependencyDescriptor())
        return GenerationTask(
            index=index,
            total=total,
            path=path,
            destination=target_dir / path,
            context=context,
        )
    return _make
