from asyncio import Event, sleep, wait_for
from json import loads
import logging
from typing import Callable

from extproc_aggregation import (
    AggregatedPayload,
    AggregationError,
    Aggregator,
    Album,
    BackendDecodeError,
    BackendTransportError,
    Post,
    ResourceKind,
    StreamProcessingError,
)
from extproc_aggregation.testing import FakeBackend, SAMPLE_PAYLOAD
from grpc import StatusCode
import httpx
import pytest

ALBUMS = [
    {"id": 3, "userId": 7, "title": "c"},
    {"id": 1, "userId": 7, "title": "a"},
    {"id": 2, "userId": 7, "title": "b"},
]

POSTS = [
    {"id": 20, "userId": 7, "title": "t2", "body": "b2"},
    {"id": 10, "userId": 7, "title": "t1", "body": "b1"},
]


def test_payload_to_json() -> None:
    payload = AggregatedPayload(
        albums=[Album(id=1, user_id=42, title="x")],
        posts=[Post(id=9, user_id=42, title="y", body="z")],
    )
    assert payload.to_json() == SAMPLE_PAYLOAD


def test_empty_payload_to_json() -> None:
    assert AggregatedPayload(albums=[], posts=[]).to_json() == '{"albums":[],"posts":[]}'


@pytest.mark.asyncio
async def test_aggregate(make_backend: Callable[..., FakeBackend]) -> None:
    backend = make_backend()
    body = await Aggregator(backend.client()).aggregate("42")
    assert body == SAMPLE_PAYLOAD
    assert sorted(backend.paths) == ["/users/42/albums", "/users/42/posts"]


@pytest.mark.asyncio
async def test_aggregate_preserves_records(make_backend: Callable[..., FakeBackend]) -> None:
    backend = make_backend(albums=ALBUMS, posts=POSTS)
    body = await Aggregator(backend.client()).aggregate("7")
    assert loads(body) == {"albums": ALBUMS, "posts": POSTS}


@pytest.mark.asyncio
async def test_fetches_run_concurrently(make_backend: Callable[..., FakeBackend]) -> None:
    posts_requested = Event()

    async def albums(request: httpx.Request) -> list:
        # deadlocks (and times out) unless posts is requested meanwhile
        await wait_for(posts_requested.wait(), timeout=2)
        return ALBUMS

    def posts(request: httpx.Request) -> list:
        posts_requested.set()
        return POSTS

    backend = make_backend(albums=albums, posts=posts)
    body = await Aggregator(backend.client()).aggregate("7")
    assert loads(body) == {"albums": ALBUMS, "posts": POSTS}


@pytest.mark.asyncio
async def test_waits_for_both_before_failing(make_backend: Callable[..., FakeBackend]) -> None:
    finished = []

    async def albums(request: httpx.Request) -> list:
        await sleep(0.05)
        finished.append("albums")
        return ALBUMS

    backend = make_backend(albums=albums, posts=httpx.ConnectError("refused"))
    with pytest.raises(AggregationError):
        await Aggregator(backend.client()).aggregate("7")
    assert finished == ["albums"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "albums, posts, kind, error, status",
    (
        (httpx.ConnectError("refused"), POSTS, ResourceKind.albums, BackendTransportError, StatusCode.UNAVAILABLE),
        (ALBUMS, httpx.ReadTimeout("slow"), ResourceKind.posts, BackendTransportError, StatusCode.UNAVAILABLE),
        (ALBUMS, {"not": "a list"}, ResourceKind.posts, BackendDecodeError, StatusCode.INTERNAL),
        ({"not": "a list"}, httpx.ConnectError("refused"), ResourceKind.albums, BackendDecodeError, StatusCode.INTERNAL),
    ),
)
async def test_aggregate_fails_as_a_whole(
    make_backend: Callable[..., FakeBackend],
    albums,
    posts,
    kind: ResourceKind,
    error: type,
    status: StatusCode,
) -> None:
    backend = make_backend(albums=albums, posts=posts)
    with pytest.raises(AggregationError) as err:
        await Aggregator(backend.client()).aggregate("7")
    assert isinstance(err.value, StreamProcessingError)
    assert isinstance(err.value.cause, error)
    assert err.value.cause.kind == kind
    assert err.value.__cause__ is err.value.cause
    assert err.value.identifier == "7"
    assert err.value.status_code == status
    assert "aggregation failed for user 7" in err.value.details


@pytest.mark.asyncio
async def test_unexpected_errors_propagate(make_backend: Callable[..., FakeBackend]) -> None:
    backend = make_backend(posts=RuntimeError("bug"))
    with pytest.raises(RuntimeError, match="bug"):
        await Aggregator(backend.client()).aggregate("7")


@pytest.mark.asyncio
async def test_duration_is_logged(make_backend: Callable[..., FakeBackend], caplog) -> None:
    backend = make_backend()
    with caplog.at_level(logging.INFO, logger="extproc_aggregation.aggregator"):
        await Aggregator(backend.client()).aggregate("42")
    records = [r for r in caplog.records if r.name == "extproc_aggregation.aggregator"]
    assert len(records) == 1
    assert records[0].user == "42"
    assert records[0].duration_ns >= 0
