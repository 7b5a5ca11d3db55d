"""Account rotation on top of the single-account client.

Two retry layers compose here. :class:`GeminiClient` retries on one
account until its attempts run out; only then does
:class:`RotatingGenerator` mark that account rate limited and move to the
next one from the :class:`AccountPool`. Each configured account is tried
at most once per call.
"""

import logging

from ..accounts import Account, AccountPool
from ..errors import CredentialError, NoAccountsError, RateLimited
from ..logging import JSONLLogger, get_logger
from ..memory.models import Message
from .client import GeminiClient, GenerationOptions, GenerationResult

logger = logging.getLogger(__name__)


class RotatingGenerator:
    """Generates replies, failing over across pooled accounts."""

    def __init__(
        self,
        pool: AccountPool,
        client: GeminiClient,
        rate_limit_cooldown_ms: int = 60_000,
        event_log: JSONLLogger | None = None,
    ) -> None:
        self.pool = pool
        self.client = client
        self.rate_limit_cooldown_ms = rate_limit_cooldown_ms
        self._events = event_log or get_logger()

    async def generate(
        self,
        messages: list[Message],
        system_prompt: str | None = None,
        options: GenerationOptions | None = None,
    ) -> GenerationResult:
        """Generate a reply with the next usable account.

        Raises:
            NoAccountsError: The pool is empty.
            RateLimited: Every account tried ran out of quota.
            CredentialError: Every account tried had an unusable credential.
            TransientUpstreamError, UpstreamError: Propagated from the client
                without rotating.
        """
        attempts = max(1, self.pool.size())
        tried: set[str] = set()
        last_error: CredentialError | RateLimited | None = None

        for _ in range(attempts):
            account = self.pool.next_account()
            if account is None:
                raise NoAccountsError("No upstream accounts configured")
            if account.identity in tried:
                account = self._soonest_untried(tried)
                if account is None:
                    break
            tried.add(account.identity)

            try:
                return await self.client.generate(account, messages, system_prompt, options)
            except RateLimited as e:
                last_error = e
                self.pool.mark_unavailable(account.identity, self.rate_limit_cooldown_ms)
                self._events.log(
                    "account_rate_limited",
                    account=account.identity,
                    cooldown_ms=self.rate_limit_cooldown_ms,
                )
                self._events.log_rotation(account.identity, "rate_limited")
            except CredentialError as e:
                last_error = e
                logger.warning(f"Credential failure for {account.identity}: {e}")
                self._events.log_rotation(account.identity, "credential")

        assert last_error is not None
        raise last_error

    def _soonest_untried(self, tried: set[str]) -> Account | None:
        """The untried account that becomes available first.

        The pool keeps handing out the same account while every one is
        rate limited, and a credential failure leaves no mark to move past it.
        """
        untried = [a for a in self.pool.list_accounts() if a.identity not in tried]
        if not untried:
            return None
        return min(untried, key=lambda a: a.unavailable_until or 0)
