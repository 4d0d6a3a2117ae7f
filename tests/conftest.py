import pytest
import pytest_asyncio

from braidr.core.supabase import SupabaseClient
from braidr.db.session_store import SessionStore
from braidr.db.storage import MemoryStorage
from braidr.services.api_client import ApiClient
from braidr.services.auth_service import AuthManager
from braidr.services.identity_service import IdentityService
from braidr.services.profile_service import ProfileService

from fake_backends import FlakyTransport, create_api_app, create_supabase_app

SUPABASE_URL = "http://supabase.test"
API_BASE_URL = "http://api.test/api"
ANON_KEY = "anon-key"

class AuthStack:
    """Everything needed to drive an AuthManager against the fake provider."""

    def __init__(self, app, transport, storage, supabase):
        self.app = app
        self.transport = transport
        self.storage = storage
        self.supabase = supabase
        self.managers = []

    def build_manager(self) -> AuthManager:
        """A fresh manager over the same storage, as after an app restart."""
        identity = IdentityService(self.supabase, self.storage)
        manager = AuthManager(identity, ProfileService(self.supabase), SessionStore(self.storage))
        self.managers.append(manager)
        return manager

@pytest.fixture
def supabase_app():
    return create_supabase_app()

@pytest.fixture
def api_app():
    return create_api_app()

@pytest.fixture
def storage():
    return MemoryStorage()

@pytest_asyncio.fixture
async def auth_stack(supabase_app, storage):
    transport = FlakyTransport(supabase_app)
    supabase = SupabaseClient(SUPABASE_URL, ANON_KEY, transport=transport)
    stack = AuthStack(supabase_app, transport, storage, supabase)
    yield stack
    for manager in stack.managers:
        await manager.shutdown()
    await supabase.aclose()

@pytest_asyncio.fixture
async def api_client(api_app, storage):
    transport = FlakyTransport(api_app)
    client = ApiClient(API_BASE_URL, storage, transport=transport)
    client.test_transport = transport
    yield client
    await client.aclose()
