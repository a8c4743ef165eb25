# tests/integration/conftest.py — v8
"""Shared fixtures for integration tests.

Durable checkpoint stores live under tmp_path; the Redis store runs
against a testcontainers Redis and is skipped without Docker.

Container lifecycle:
- session scope: the container starts once per pytest session
- function scope: fresh key space per test (FLUSHDB)

Custom container wrapper:
- Uses DockerContainer directly with bridge network IP + internal port
- Required for devcontainer with docker-outside-of-docker (socket mount)

Changelog:
    v8: Checkpoint store fixtures (json, sqlite, redis) for stage runs.
"""

from __future__ import annotations

import logging
import time

import pytest

from stageflow.checkpoint.json_store import JsonCheckpointStore
from stageflow.checkpoint.sqlite_store import SqliteCheckpointStore

logger = logging.getLogger(__name__)


# ── Pytest markers ──────────────────────────────────────────────

def pytest_configure(config):
    config.addinivalue_line("markers", "redis: marks tests requiring Redis container")


# =====================================================================
#  DEVCONTAINER NETWORKING HELPERS
# =====================================================================

def _get_container_bridge_ip(container, max_attempts: int = 10) -> str:
    """Get container bridge network IP with retries."""
    for attempt in range(max_attempts):
        try:
            wrapped = container.get_wrapped_container()
            wrapped.reload()
            networks = wrapped.attrs.get("NetworkSettings", {}).get("Networks", {})
            for net_name, net_info in networks.items():
                ip = net_info.get("IPAddress", "")
                if ip:
                    logger.info("Container %s IP: %s (network: %s)", wrapped.short_id, ip, net_name)
                    return ip
        except Exception as e:
            logger.debug("Error getting IP (attempt %d): %s", attempt + 1, e)
        time.sleep(0.5)

    raise RuntimeError(
        f"Could not obtain container bridge IP after {max_attempts} attempts"
    )


def _docker_available() -> bool:
    """Check if Docker daemon is reachable."""
    try:
        import docker
        client = docker.from_env()
        client.ping()
        return True
    except Exception:
        return False


# =====================================================================
#  FILE-BACKED STORES
# =====================================================================

@pytest.fixture
def json_store(tmp_path) -> JsonCheckpointStore:
    return JsonCheckpointStore(tmp_path / "checkpoints")


@pytest.fixture
def sqlite_store(tmp_path):
    store = SqliteCheckpointStore(db_path=tmp_path / "checkpoints.db")
    yield store
    store.close()


# =====================================================================
#  REDIS CONTAINER — session scope (bridge IP)
# =====================================================================

REDIS_IMAGE = "redis:7-alpine"
REDIS_PORT = 6379


@pytest.fixture(scope="session")
def redis_container():
    if not _docker_available():
        pytest.skip("Docker not available")

    from testcontainers.core.container import DockerContainer
    from testcontainers.core.waiting_utils import wait_for_logs

    container = DockerContainer(REDIS_IMAGE).with_exposed_ports(REDIS_PORT)
    container.start()
    wait_for_logs(container, predicate=r"Ready to accept connections", timeout=30)

    ip = _get_container_bridge_ip(container)
    logger.info("Redis ready at %s:%d", ip, REDIS_PORT)
    yield f"redis://{ip}:{REDIS_PORT}/0"
    container.stop()


@pytest.fixture
def redis_store(redis_container):
    from stageflow.checkpoint.redis_store import RedisCheckpointStore

    store = RedisCheckpointStore(redis_url=redis_container)
    store._client.flushdb()
    yield store
    store.close()
