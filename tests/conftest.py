from typing import Any, Callable

from extproc_aggregation.testing import (
    FakeBackend,
    FakeServicerContext,
    SAMPLE_ALBUMS,
    SAMPLE_POSTS,
)
import pytest


@pytest.fixture
def fake_context() -> FakeServicerContext:
    return FakeServicerContext()


@pytest.fixture
def make_backend() -> Callable[..., FakeBackend]:
    def _make_backend(albums: Any = SAMPLE_ALBUMS, posts: Any = SAMPLE_POSTS) -> FakeBackend:
        return FakeBackend(albums=albums, posts=posts)

    return _make_backend
