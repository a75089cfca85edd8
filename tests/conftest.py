"""Shared fixtures for the arbitrage sizer tests."""

import pytest

from tests.doubles import FakeGateway, make_pool_state


@pytest.fixture
def pool_state():
    return make_pool_state()


@pytest.fixture
def gateway():
    return FakeGateway()
