from __future__ import annotations

import pytest

from classsync.core.app_context import AppContext
from helpers import make_settings, make_store, open_session


@pytest.fixture
async def ctx():
    context = AppContext(settings=make_settings(), store=make_store())
    yield context
    await context.shutdown()


@pytest.fixture
async def live(ctx):
    await open_session(ctx)
    return ctx
