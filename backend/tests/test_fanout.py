"""
Tests for the batch fan-out executor and prompt runner.
"""
import pytest

from batchguard.db.repositories.responses import ResponseRepository
from batchguard.infrastructure.exceptions import UnitDispatchError
from batchguard.services.fanout_service import BatchFanOutExecutor
from batchguard.services.prompt_runner import PromptRunner

DAY = "2026-05-04"


def make_executor(providers, concurrency=4, unit_timeout=5.0):
    runner = PromptRunner(provider_lookup=providers.__getitem__)
    return BatchFanOutExecutor(runner=runner, concurrency=concurrency, unit_timeout=unit_timeout)


async def responses_by_status(status):
    return await ResponseRepository().list(filters={"status": status})


class TestFanOut:

    @pytest.mark.asyncio
    async def test_every_unit_dispatched(self, seed_catalog, fake_providers):
        await seed_catalog(org_names=("Acme", "Globex"), prompts_per_org=2)

        result = await make_executor(fake_providers).run(DAY)

        assert result.organizations_processed == 2
        assert result.total_runs == 8
        assert result.failed_runs == 0
        assert len(await responses_by_status("success")) == 8
        assert {r.run_key for r in await responses_by_status("success")} == {DAY}

    @pytest.mark.asyncio
    async def test_partial_failures_do_not_abort(self, seed_catalog, fake_providers):
        # 5 prompts x 2 providers = 10 units, 3 of them fail
        await seed_catalog(org_names=("Acme",), prompts_per_org=5)
        fake_providers["perplexity"].fail_on = {
            "best tools for Acme #0",
            "best tools for Acme #1",
            "best tools for Acme #2",
        }

        result = await make_executor(fake_providers).run(DAY)

        assert result.total_runs == 7
        assert result.failed_runs == 3
        assert result.org_results[0].success is True
        errors = await responses_by_status("error")
        assert len(errors) == 3
        assert all(r.provider == "perplexity" for r in errors)

    @pytest.mark.asyncio
    async def test_slow_unit_times_out(self, seed_catalog, fake_providers):
        await seed_catalog(org_names=("Acme",), prompts_per_org=1)
        fake_providers["openai"].delay = 1.0

        result = await make_executor(fake_providers, unit_timeout=0.05).run(DAY)

        assert result.total_runs == 1
        assert result.failed_runs == 1
        errors = await responses_by_status("error")
        assert len(errors) == 1
        assert "timed out" in errors[0].error

    @pytest.mark.asyncio
    async def test_disabled_providers_and_inactive_prompts_skipped(self, seed_catalog, fake_providers):
        await seed_catalog(
            org_names=("Acme",),
            prompts_per_org=2,
            providers=("openai",),
            disabled_providers=("gemini",),
            inactive_prompts_per_org=3,
        )

        result = await make_executor(fake_providers).run(DAY)

        assert result.total_runs == 2
        assert fake_providers["gemini"].calls == []
        assert result.org_results[0].prompts_count == 2
        assert result.org_results[0].providers_count == 1

    @pytest.mark.asyncio
    async def test_no_organizations(self, db, fake_providers):
        result = await make_executor(fake_providers).run(DAY)
        assert result.organizations_processed == 0
        assert result.total_runs == 0

    @pytest.mark.asyncio
    async def test_organization_listing_failure_escapes(self, db, fake_providers):
        class BrokenOrgs:
            async def list_all(self):
                raise RuntimeError("catalog offline")

        executor = make_executor(fake_providers)
        executor.organizations = BrokenOrgs()
        with pytest.raises(RuntimeError, match="catalog offline"):
            await executor.run(DAY)

    @pytest.mark.asyncio
    async def test_prompt_listing_failure_marks_org(self, seed_catalog, fake_providers):
        await seed_catalog(org_names=("Acme", "Globex"), prompts_per_org=1)
        executor = make_executor(fake_providers)
        real_prompts = executor.prompts

        class FlakyPrompts:
            async def list_active(self, org_id):
                org = await executor.organizations.get_by_id(org_id)
                if org.name == "Acme":
                    raise RuntimeError("prompts unavailable")
                return await real_prompts.list_active(org_id)

        executor.prompts = FlakyPrompts()
        result = await executor.run(DAY)

        by_name = {r.org_name: r for r in result.org_results}
        assert by_name["Acme"].success is False
        assert "prompts unavailable" in by_name["Acme"].error
        assert by_name["Globex"].successful_runs == 2
        assert result.organizations_processed == 2


class TestPromptRunner:

    @pytest.mark.asyncio
    async def test_success_recorded(self, db, fake_providers):
        runner = PromptRunner(provider_lookup=fake_providers.__getitem__)
        response_id = await runner.run_unit(
            org_id="org-1",
            prompt_id="prompt-1",
            prompt_text="hello",
            provider_name="gemini",
            run_key=DAY,
            correlation_id="corr-1",
        )

        row = await ResponseRepository().get_by_id(response_id)
        assert row.status == "success"
        assert row.raw_response == "gemini answer to hello"
        assert row.correlation_id == "corr-1"

    @pytest.mark.asyncio
    async def test_unknown_provider_raises_dispatch_error(self, db, fake_providers):
        runner = PromptRunner(provider_lookup=fake_providers.__getitem__)
        with pytest.raises(UnitDispatchError) as exc_info:
            await runner.run_unit(
                org_id="org-1",
                prompt_id="prompt-1",
                prompt_text="hello",
                provider_name="unknown",
                run_key=DAY,
            )

        assert exc_info.value.provider == "unknown"
        assert len(await responses_by_status("error")) == 1


def test_explicit_zero_timeout_is_kept(test_settings):
    executor = BatchFanOutExecutor(unit_timeout=0, concurrency=0)
    assert executor.unit_timeout == 0
    assert executor.concurrency == 1

    defaults = BatchFanOutExecutor()
    assert defaults.unit_timeout == 5.0
    assert defaults.concurrency == test_settings.fanout_concurrency
