"""Tests for assembling and launching a worker process."""

import asyncio
import signal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from denormalizer.__main__ import main
from denormalizer.domain import OperationType
from denormalizer.domain.exceptions import ConfigurationError, StreamStartupError
from denormalizer.projections import (
    FavoritesCounter,
    TagListMaintenance,
    UserProfilePropagation,
)
from denormalizer.sharding import ShardAssignment
from denormalizer.worker import build_handlers, build_supervisor, install_signal_handlers


def test_build_handlers_covers_every_collection(store):
    handlers = build_handlers(store)

    assert [type(h) for h in handlers] == [
        UserProfilePropagation,
        TagListMaintenance,
        FavoritesCounter,
    ]
    assert {h.collection for h in handlers} == {"users", "articles", "favorites"}
    assert all(h.store is store for h in handlers)


def test_build_supervisor_names_streams_per_shard(store, change_log, positions):
    shard = ShardAssignment(index=2, count=3)

    supervisor = build_supervisor(build_handlers(store), change_log, positions, shard)

    assert [r.stream_id for r in supervisor.runners] == [
        "user_profile_sync_shard_2_of_3",
        "article_tag_sync_shard_2_of_3",
        "favorites_count_sync_shard_2_of_3",
    ]
    assert supervisor.readiness_marker == "READY shard 2 of 3"


@pytest.mark.asyncio
async def test_signals_request_shutdown(store, change_log, positions, single_shard):
    supervisor = build_supervisor(build_handlers(store), change_log, positions, single_shard)
    loop = asyncio.get_running_loop()

    with patch.object(loop, "add_signal_handler") as add_signal_handler:
        install_signal_handlers(supervisor)

    registered = {call.args[0]: call.args[1] for call in add_signal_handler.call_args_list}
    assert registered == {
        signal.SIGINT: supervisor.request_shutdown,
        signal.SIGTERM: supervisor.request_shutdown,
    }


@pytest.mark.asyncio
async def test_end_to_end_in_memory(store, change_log, positions, single_shard, eventually):
    """Events on all three collections reach the derived state."""
    store.articles = {"a1": {"_id": "a1", "authorId": "u1", "favoritesCount": 0}}
    store.comments = {"c1": {"_id": "c1", "authorId": "u1"}}
    supervisor = build_supervisor(build_handlers(store), change_log, positions, single_shard)
    supervisor.ready_stream = MagicMock()

    task = asyncio.create_task(supervisor.run())
    await eventually(lambda: supervisor.ready)

    change_log.append("users", OperationType.UPDATE, "u1", updated_fields={"bio": "hello"})
    change_log.append("articles", OperationType.INSERT, "a1", full_document={"tagList": ["js"]})
    change_log.append("favorites", OperationType.INSERT, "f1", full_document={"articleId": "a1"})

    await eventually(
        lambda: store.comments["c1"].get("authorBio") == "hello"
        and store.tags.get("js", {}).get("articleCount") == 1
        and store.articles["a1"]["favoritesCount"] == 1
    )

    supervisor.request_shutdown()
    await asyncio.wait_for(task, 2)
    stored = await positions.get("favorites_count_sync_shard_0_of_1")
    assert stored.position == 3


@pytest.fixture
def quiet_logging():
    with patch("denormalizer.__main__.configure_logging") as configure:
        yield configure


def test_main_rejects_invalid_configuration(quiet_logging):
    with patch(
        "denormalizer.__main__.load_settings",
        side_effect=ConfigurationError("SOURCE_URI: Field required"),
    ):
        assert main() == 1


def test_main_exits_cleanly_after_shutdown(quiet_logging):
    settings = MagicMock(log_level="DEBUG")
    with (
        patch("denormalizer.__main__.load_settings", return_value=settings),
        patch("denormalizer.__main__.run_worker", new=AsyncMock()) as run_worker,
    ):
        assert main() == 0

    run_worker.assert_awaited_once_with(settings)
    quiet_logging.assert_called_once_with("DEBUG")


def test_main_fails_when_a_stream_cannot_start(quiet_logging):
    error = StreamStartupError("user_profile_sync_shard_0_of_1", "not a replica set")
    with (
        patch("denormalizer.__main__.load_settings", return_value=MagicMock(log_level="INFO")),
        patch("denormalizer.__main__.run_worker", new=AsyncMock(side_effect=error)),
    ):
        assert main() == 1
