from __future__ import annotations

import pytest

from unifiedauth.core.facade import UnifiedAuthFacade

from .helpers.config_builders import build_auth_config
from .helpers.fakes import FakeClock, RecordingDispatcher

ALICE_PASSWORD = "correct horse battery"
ADMIN_PASSWORD = "admin passphrase 1"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def auth_cfg(tmp_path):
    return build_auth_config(tmp_path)


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def make_facade(auth_cfg, clock, dispatcher):
    """
    Builds facades on the fake clock with audit files under tmp_path; all of them
    are closed at teardown.
    """
    built = []

    def _make(cfg=None, **kwargs):
        kwargs.setdefault("time_fn", clock.time)
        kwargs.setdefault("dispatcher", dispatcher)
        f = UnifiedAuthFacade.build(cfg or auth_cfg, **kwargs)
        built.append(f)
        return f

    yield _make
    for f in built:
        f.close()


@pytest.fixture
def facade(make_facade):
    return make_facade()


@pytest.fixture
def alice(facade):
    return facade.create_user("alice@example.com", ALICE_PASSWORD, display_name="Alice")


@pytest.fixture
def admin(facade):
    from unifiedauth.core.identity import UserRole

    return facade.create_user("root@example.com", ADMIN_PASSWORD, display_name="Root", role=UserRole.admin)
