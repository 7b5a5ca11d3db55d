"""Round-robin account pool with rate-limit awareness."""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from ..clock import now_ms
from .state import StateStore

logger = logging.getLogger(__name__)

ACCOUNTS_KEY = "accounts"
CURSOR_KEY = "current_account_index"
RATE_LIMIT_PREFIX = "rate_limit:"


@dataclass(frozen=True)
class Account:
    """An upstream account.

    Attributes:
        identity: Stable identifier, usually the account email.
        credential: Long-lived refresh token exchanged for access tokens.
        project_id: Optional project context sent with requests.
        unavailable_until: Millisecond timestamp until which the account
            is rate limited, or None.
    """

    identity: str
    credential: str
    project_id: str | None = None
    unavailable_until: int | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize without transient availability state."""
        data: dict[str, Any] = {"email": self.identity, "refreshToken": self.credential}
        if self.project_id:
            data["projectId"] = self.project_id
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Account":
        """Create from the ``{email, refreshToken, projectId}`` form."""
        return cls(
            identity=str(data["email"]),
            credential=str(data["refreshToken"]),
            project_id=data.get("projectId") or None,
        )


class AccountPool:
    """Selects upstream accounts round-robin, skipping rate-limited ones.

    The account list, the rotation cursor and the per-account rate-limit
    marks all live in the shared :class:`StateStore`; nothing is cached
    between calls, so independent processes share one rotation.
    """

    def __init__(self, state: StateStore, clock: Callable[[], int] = now_ms) -> None:
        self.state = state
        self.clock = clock

    def save_accounts(self, accounts: list[Account]) -> None:
        """Replace the configured accounts and reset the cursor."""
        with self.state.transaction():
            self.state.set(ACCOUNTS_KEY, [a.to_dict() for a in accounts])
            self.state.set(CURSOR_KEY, 0)
        logger.info(f"Initialized {len(accounts)} account(s)")

    def init_from_dicts(self, raw: list[dict[str, Any]]) -> list[Account]:
        """Validate raw account definitions and save them.

        Entries missing ``email`` or ``refreshToken`` are skipped.

        Returns:
            The accounts that were saved.
        """
        accounts = []
        for item in raw:
            if not item.get("email") or not item.get("refreshToken"):
                logger.warning(f"Skipping account without email/refreshToken: {item.get('email')}")
                continue
            accounts.append(Account.from_dict(item))
        self.save_accounts(accounts)
        return accounts

    def _load(self) -> list[Account]:
        raw = self.state.get(ACCOUNTS_KEY, [])
        return [Account.from_dict(item) for item in raw]

    def _unavailable_until(self, identity: str) -> int | None:
        return self.state.get(f"{RATE_LIMIT_PREFIX}{identity}")

    def _with_status(self, account: Account) -> Account:
        return Account(
            identity=account.identity,
            credential=account.credential,
            project_id=account.project_id,
            unavailable_until=self._unavailable_until(account.identity),
        )

    def list_accounts(self) -> list[Account]:
        """Return every account with its current rate-limit mark."""
        return [self._with_status(a) for a in self._load()]

    def size(self) -> int:
        """Number of configured accounts."""
        return len(self._load())

    def next_account(self) -> Account | None:
        """Pick the next usable account.

        Scans from the cursor, wrapping once, and returns the first account
        that is not rate limited, advancing the cursor past it. When every
        account is rate limited, returns the one that frees up soonest and
        leaves the cursor where it is.

        Returns:
            The selected account, or None if no accounts are configured.
        """
        with self.state.transaction():
            accounts = [self._with_status(a) for a in self._load()]
            if not accounts:
                return None

            now = self.clock()
            cursor = int(self.state.get(CURSOR_KEY, 0)) % len(accounts)

            for offset in range(len(accounts)):
                index = (cursor + offset) % len(accounts)
                account = accounts[index]
                until = account.unavailable_until
                if until is None or until <= now:
                    self.state.set(CURSOR_KEY, (index + 1) % len(accounts))
                    return account

        soonest = min(accounts, key=lambda a: a.unavailable_until or 0)
        logger.warning(
            f"All {len(accounts)} account(s) rate limited; "
            f"falling back to {soonest.identity}"
        )
        return soonest

    def mark_unavailable(self, identity: str, duration_ms: int = 60_000) -> int:
        """Rate-limit an account for ``duration_ms``.

        Returns:
            The timestamp until which the account is unavailable.
        """
        until = self.clock() + duration_ms
        self.state.set(f"{RATE_LIMIT_PREFIX}{identity}", until, ttl_ms=duration_ms)
        logger.info(f"Account {identity} rate limited for {duration_ms / 1000:.0f}s")
        return until
