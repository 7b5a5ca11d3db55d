"""Tests for RotatingGenerator."""

from pathlib import Path

import pytest

from neuro.accounts import Account, AccountPool, StateStore
from neuro.errors import (
    CredentialError,
    NoAccountsError,
    RateLimited,
    TransientUpstreamError,
)
from neuro.llm import GenerationResult, RotatingGenerator
from neuro.memory import Message, Role

MESSAGES = [Message(Role.USER, "Привет", 1)]


class ScriptedClient:
    """Answers per account identity: a result, or an exception to raise."""

    def __init__(self, outcomes: dict) -> None:
        self.outcomes = outcomes
        self.calls: list[str] = []

    async def generate(self, account: Account, messages, system_prompt=None, options=None):
        self.calls.append(account.identity)
        outcome = self.outcomes[account.identity]
        if isinstance(outcome, Exception):
            raise outcome
        return GenerationResult(text=outcome)


@pytest.fixture
def pool(tmp_path: Path) -> AccountPool:
    state = StateStore(tmp_path / "state.db")
    state.init_db()
    pool = AccountPool(state)
    pool.init_from_dicts(
        [
            {"email": "a@example.com", "refreshToken": "rt-a"},
            {"email": "b@example.com", "refreshToken": "rt-b"},
        ]
    )
    yield pool
    state.close()


class TestRotatingGenerator:
    @pytest.mark.asyncio
    async def test_uses_next_account(self, pool: AccountPool):
        client = ScriptedClient({"a@example.com": "от A", "b@example.com": "от B"})
        generator = RotatingGenerator(pool, client)

        first = await generator.generate(MESSAGES)
        second = await generator.generate(MESSAGES)

        assert (first.text, second.text) == ("от A", "от B")

    @pytest.mark.asyncio
    async def test_rotates_on_rate_limit(self, pool: AccountPool):
        client = ScriptedClient(
            {"a@example.com": RateLimited("quota", 429), "b@example.com": "от B"}
        )
        generator = RotatingGenerator(pool, client, rate_limit_cooldown_ms=60_000)

        result = await generator.generate(MESSAGES)

        assert result.text == "от B"
        assert client.calls == ["a@example.com", "b@example.com"]
        statuses = {a.identity: a.unavailable_until for a in pool.list_accounts()}
        assert statuses["a@example.com"] is not None
        assert statuses["b@example.com"] is None

    @pytest.mark.asyncio
    async def test_rate_limited_account_skipped_next_time(self, pool: AccountPool):
        client = ScriptedClient(
            {"a@example.com": RateLimited("quota", 429), "b@example.com": "от B"}
        )
        generator = RotatingGenerator(pool, client)

        await generator.generate(MESSAGES)
        await generator.generate(MESSAGES)

        assert client.calls == ["a@example.com", "b@example.com", "b@example.com"]

    @pytest.mark.asyncio
    async def test_each_account_tried_once(self, pool: AccountPool):
        client = ScriptedClient(
            {
                "a@example.com": RateLimited("quota", 429),
                "b@example.com": RateLimited("quota", 429),
            }
        )

        with pytest.raises(RateLimited):
            await RotatingGenerator(pool, client).generate(MESSAGES)

        assert client.calls == ["a@example.com", "b@example.com"]

    @pytest.mark.asyncio
    async def test_credential_error_moves_on_without_marking(self, pool: AccountPool):
        client = ScriptedClient(
            {"a@example.com": CredentialError("revoked"), "b@example.com": "от B"}
        )

        result = await RotatingGenerator(pool, client).generate(MESSAGES)

        assert result.text == "от B"
        assert all(a.unavailable_until is None for a in pool.list_accounts())

    @pytest.mark.asyncio
    async def test_credential_error_while_all_limited_tries_others(self, pool: AccountPool):
        pool.mark_unavailable("a@example.com", 10_000)
        pool.mark_unavailable("b@example.com", 20_000)
        client = ScriptedClient(
            {"a@example.com": CredentialError("revoked"), "b@example.com": "от B"}
        )
        generator = RotatingGenerator(pool, client)

        result = await generator.generate(MESSAGES)

        assert result.text == "от B"
        assert client.calls == ["a@example.com", "b@example.com"]

    @pytest.mark.asyncio
    async def test_credential_errors_while_all_limited_exhaust_pool(self, pool: AccountPool):
        pool.mark_unavailable("a@example.com", 10_000)
        pool.mark_unavailable("b@example.com", 20_000)
        client = ScriptedClient(
            {"a@example.com": CredentialError("revoked"), "b@example.com": CredentialError("revoked")}
        )
        generator = RotatingGenerator(pool, client)

        with pytest.raises(CredentialError):
            await generator.generate(MESSAGES)

        assert client.calls == ["a@example.com", "b@example.com"]

    @pytest.mark.asyncio
    async def test_transient_error_not_rotated(self, pool: AccountPool):
        client = ScriptedClient(
            {"a@example.com": TransientUpstreamError("503", 503), "b@example.com": "от B"}
        )

        with pytest.raises(TransientUpstreamError):
            await RotatingGenerator(pool, client).generate(MESSAGES)

        assert client.calls == ["a@example.com"]

    @pytest.mark.asyncio
    async def test_empty_pool(self, tmp_path: Path):
        state = StateStore(tmp_path / "empty.db")
        state.init_db()

        with pytest.raises(NoAccountsError):
            await RotatingGenerator(AccountPool(state), ScriptedClient({})).generate(MESSAGES)

        state.close()
