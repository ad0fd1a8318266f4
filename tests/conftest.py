"""Pytest configuration and fixtures."""

import copy
import os
from typing import Any, Dict, List, Optional
from unittest.mock import patch

import pytest
from dotenv import load_dotenv

# Load test environment variables
load_dotenv()

# Set test environment
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DEBUG", "true")

from canvas_relay.infra.config import config  # noqa: E402
from canvas_relay.models.integration import EffectiveCapability, IntegrationConfig  # noqa: E402
from canvas_relay.services.protocol_normalizer import parse_provider_turn  # noqa: E402


class ScriptedProvider:
    """Provider client stub replaying a fixed list of reply bodies.

    The last reply is repeated once the script runs out.
    """

    def __init__(self, replies: List[Dict[str, Any]]):
        self.replies = list(replies)
        self.payloads: List[Dict[str, Any]] = []
        self.first_turn_flags: List[bool] = []

    @property
    def call_count(self) -> int:
        return len(self.payloads)

    async def complete_turn(
        self,
        provider: str,
        payload: Dict[str, Any],
        authorization: Optional[str] = None,
        first_turn: bool = True,
    ):
        self.payloads.append(copy.deepcopy(payload))
        self.first_turn_flags.append(first_turn)
        index = min(len(self.payloads) - 1, len(self.replies) - 1)
        return parse_provider_turn(self.replies[index])


@pytest.fixture(autouse=True)
def no_pro_tier_check():
    """Integration executors skip the Pro tier lookup unless a test enables it."""
    with patch.object(config, "REQUIRE_PRO_TIER", False):
        yield


@pytest.fixture
def make_capability():
    """Factory for EffectiveCapability values."""
    def _make(
        family: str,
        permissions: Optional[Dict[str, bool]] = None,
        connection_id: Optional[str] = "conn-1",
        enabled: bool = True,
    ) -> EffectiveCapability:
        return EffectiveCapability(
            family=family,
            config=IntegrationConfig(enabled=enabled, connectionId=connection_id, permissions=permissions or {}),
            connection_id=connection_id,
        )
    return _make


@pytest.fixture
def scripted_provider():
    """Factory for ScriptedProvider stubs."""
    return ScriptedProvider
