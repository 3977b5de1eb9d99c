"""
Shared test fixtures for batchguard tests.
"""
import asyncio
import uuid
from typing import Dict, Iterable, List

import pytest
from httpx import AsyncClient, ASGITransport

from batchguard.infrastructure.config import get_settings
from batchguard.models.scheduler import FanOutResult, OrgFanOutResult

CRON_SECRET = "test-cron-secret"
SERVICE_ROLE_KEY = "test-service-role-key"
API_TOKEN = "test-api-token"


@pytest.fixture
def test_settings(tmp_path, monkeypatch):
    """Settings pointing at a throwaway SQLite store, with known credentials."""
    env = {
        "BATCHGUARD_DATABASE_URL": f"sqlite:///{tmp_path / 'batchguard.db'}",
        "BATCHGUARD_CRON_SECRET": CRON_SECRET,
        "BATCHGUARD_SERVICE_ROLE_KEY": SERVICE_ROLE_KEY,
        "BATCHGUARD_API_TOKEN": API_TOKEN,
        "BATCHGUARD_SCHEDULER_ENABLED": "false",
        "BATCHGUARD_RECOVERY_ORG_DELAY_SECONDS": "0",
        "BATCHGUARD_UNIT_TIMEOUT_SECONDS": "5",
    }
    for key, value in env.items():
        monkeypatch.setenv(key, value)

    get_settings.cache_clear()
    yield get_settings()
    get_settings.cache_clear()


@pytest.fixture
async def db(test_settings):
    """Initialized store with tables and the bootstrapped scheduler state row."""
    from batchguard.db.repositories.scheduler_state import SchedulerStateRepository
    from batchguard.infrastructure.database import close_database, create_tables, init_database

    await init_database(test_settings.database_url)
    await create_tables()
    await SchedulerStateRepository().ensure_state()
    yield
    await close_database()


@pytest.fixture
def seed_catalog(db):
    """Insert organizations, prompts and providers. Returns the created ids."""
    from batchguard.db.models import LLMProviderModel, OrganizationModel, PromptModel
    from batchguard.infrastructure.database import get_session

    async def _seed(
        org_names: Iterable[str] = ("Acme",),
        prompts_per_org: int = 2,
        providers: Iterable[str] = ("openai", "perplexity"),
        disabled_providers: Iterable[str] = (),
        inactive_prompts_per_org: int = 0,
    ) -> Dict[str, List[str]]:
        created: Dict[str, List[str]] = {"orgs": [], "prompts": [], "providers": []}
        async with get_session() as session:
            for name in list(providers) + list(disabled_providers):
                session.add(LLMProviderModel(
                    id=str(uuid.uuid4()),
                    name=name,
                    enabled=name not in disabled_providers,
                ))
                created["providers"].append(name)
            for org_name in org_names:
                org_id = str(uuid.uuid4())
                session.add(OrganizationModel(id=org_id, name=org_name))
                created["orgs"].append(org_id)
                for i in range(prompts_per_org + inactive_prompts_per_org):
                    prompt_id = str(uuid.uuid4())
                    session.add(PromptModel(
                        id=prompt_id,
                        org_id=org_id,
                        text=f"best tools for {org_name} #{i}",
                        active=i < prompts_per_org,
                    ))
                    if i < prompts_per_org:
                        created["prompts"].append(prompt_id)
        return created

    return _seed


class FakeProvider:
    """In-memory provider: fails for listed prompt texts, optionally slow."""

    def __init__(self, name: str, fail_on: Iterable[str] = (), delay: float = 0.0):
        self.name = name
        self.fail_on = set(fail_on)
        self.delay = delay
        self.calls: List[str] = []

    @property
    def is_configured(self) -> bool:
        return True

    async def chat(self, messages, model=None, temperature=0.2, max_tokens=2048) -> str:
        text = messages[-1]["content"]
        self.calls.append(text)
        if self.delay:
            await asyncio.sleep(self.delay)
        if text in self.fail_on:
            raise RuntimeError(f"{self.name} rejected the prompt")
        return f"{self.name} answer to {text}"

    async def aclose(self) -> None:
        pass


@pytest.fixture
def fake_providers():
    return {
        "openai": FakeProvider("openai"),
        "perplexity": FakeProvider("perplexity"),
        "gemini": FakeProvider("gemini"),
    }


class FakeExecutor:
    """Stands in for BatchFanOutExecutor; counts fan-outs."""

    def __init__(self, delay: float = 0.0, error: Exception = None, total_runs: int = 4):
        self.delay = delay
        self.error = error
        self.total_runs = total_runs
        self.run_calls: List[str] = []
        self.org_calls: List[str] = []
        self.failing_orgs: set = set()

    async def run(self, day_key: str, correlation_id=None) -> FanOutResult:
        self.run_calls.append(day_key)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return FanOutResult(total_runs=self.total_runs, failed_runs=1, organizations_processed=2)

    async def run_org(self, org, day_key, correlation_id=None, provider_names=None) -> OrgFanOutResult:
        self.org_calls.append(correlation_id)
        if org.id in self.failing_orgs:
            raise RuntimeError(f"dispatch failed for {org.name}")
        return OrgFanOutResult(
            org_id=org.id,
            org_name=org.name,
            prompts_count=2,
            providers_count=2,
            successful_runs=4,
            correlation_id=correlation_id,
        )


@pytest.fixture
def fake_executor():
    return FakeExecutor()


@pytest.fixture
def make_executor():
    return FakeExecutor


@pytest.fixture
async def client(db):
    """Async HTTP client for testing FastAPI endpoints.

    ASGITransport does not run the lifespan, so the store comes from the
    ``db`` fixture and the scheduler never starts.
    """
    from batchguard.main import app

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
