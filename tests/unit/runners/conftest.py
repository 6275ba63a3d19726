from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest


@pytest.fixture
def mock_subprocess() -> MagicMock:
    """A finished git process whose communicate() yields empty output."""
    process = MagicMock()
    process.returncode = 0
    process.pid = 4242
    process.communicate = AsyncMock(return_value=(b"", b""))
    process.wait = AsyncMock(return_value=0)
    process.terminate = MagicMock()
    process.kill = MagicMock()
    return process
