import pytest

from relay.auth.tokens import TokenIssuer
from relay.challenges.service import ChallengeService
from relay.messaging.router import EventRouter
from relay.server.websocket import ConnectionGateway
from relay.session.registry import SessionRegistry
from relay.tests.helpers.connection import MockConnection
from relay.tests.helpers.sink import RecordingNotificationSink


@pytest.fixture
def tokens():
    return TokenIssuer()


@pytest.fixture
def registry():
    return SessionRegistry()


@pytest.fixture
def sink():
    return RecordingNotificationSink()


@pytest.fixture
def event_router(registry, sink):
    return EventRouter(registry, sink)


@pytest.fixture
def gateway(tokens, registry, event_router):
    return ConnectionGateway(tokens, registry, event_router)


@pytest.fixture
def challenge_service(tokens, registry):
    return ChallengeService(tokens, registry)


@pytest.fixture
def mock_connection():
    return MockConnection()
