"""Tests for the relay's scheduled sweep job."""

import asyncio

import pytest

from vaultrelay import jobs
from vaultrelay.store import MESSAGE_TTL_MS

USER_A = "userA" + "a" * 19


class TestRunSweep:
    def test_records_last_sweep(self, vault_store, fake_clock):
        vault_store.post_message("message-1", "vault-v1", "blob")
        fake_clock.advance(MESSAGE_TTL_MS + 1)

        result = jobs.run_sweep(vault_store)

        assert result.messages_removed == 1
        assert result.vaults_removed == 1
        assert jobs.last_sweep is result

    def test_nothing_to_remove(self, vault_store):
        vault_store.create_or_join("vault-v1", "public", USER_A)
        result = jobs.run_sweep(vault_store)
        assert result.to_dict() == {
            "vaults_scanned": 1,
            "messages_removed": 0,
            "vaults_removed": 0,
        }


class TestScheduledSweep:
    @pytest.mark.asyncio
    async def test_loop_sweeps_on_interval(self, vault_store, fake_clock):
        vault_store.post_message("message-1", "vault-v1", "blob")
        fake_clock.advance(MESSAGE_TTL_MS + 1)

        task = jobs.schedule_sweep(vault_store, interval_seconds=0.05)
        assert task is not None
        await asyncio.sleep(0.3)
        jobs.stop_sweep()
        await asyncio.wait_for(task, timeout=2.0)

        assert vault_store.get_messages("vault-v1") == ([], 0)
        assert jobs.last_sweep is not None

    @pytest.mark.asyncio
    async def test_stop_before_first_pass(self, vault_store, fake_clock):
        vault_store.post_message("message-1", "vault-v1", "blob")
        fake_clock.advance(MESSAGE_TTL_MS + 1)

        task = jobs.schedule_sweep(vault_store, interval_seconds=60)
        await asyncio.sleep(0)
        jobs.stop_sweep()
        await asyncio.wait_for(task, timeout=2.0)

        # Stopped before the interval elapsed, so nothing was swept
        assert len(vault_store.get_messages("vault-v1")[0]) == 1
        assert jobs.last_sweep is None

    @pytest.mark.asyncio
    async def test_loop_survives_sweep_errors(self, vault_store, monkeypatch):
        calls = []

        def broken_sweep():
            calls.append(1)
            raise RuntimeError("boom")

        monkeypatch.setattr(vault_store, "sweep", broken_sweep)

        task = jobs.schedule_sweep(vault_store, interval_seconds=0.02)
        await asyncio.sleep(0.2)
        jobs.stop_sweep()
        await asyncio.wait_for(task, timeout=2.0)

        assert len(calls) >= 2

    def test_schedule_without_loop(self, vault_store):
        assert jobs.schedule_sweep(vault_store, interval_seconds=1) is None
