import pathlib
import sys

import pytest

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from taskflow.config import Settings  # noqa: E402
from taskflow.repository import TaskflowRepository  # noqa: E402


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def settings(tmp_path: pathlib.Path) -> Settings:
    return Settings(
        database_path=tmp_path / "taskflow.db",
        push_endpoint_url="https://push.example.com/v1/send",
        push_send_timeout_seconds=1.0,
        log_directory=tmp_path / "logs",
        log_settings_path=tmp_path / "logging_settings.conf",
    )


@pytest.fixture
async def repository(settings: Settings):
    repo = TaskflowRepository(
        settings.database_path, max_batch_ops=settings.store_max_batch_ops
    )
    await repo.initialize()
    try:
        yield repo
    finally:
        await repo.close()
