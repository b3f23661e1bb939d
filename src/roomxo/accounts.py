"""Local account registry, sessions, results history and leaderboard."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

from pydantic import ValidationError

from .errors import DuplicateAccountName, InvalidCredentials
from .models import (
    CURRENT_USER_KEY,
    HISTORY_KEY,
    USERS_KEY,
    Account,
    GameHistoryRecord,
    Outcome,
    StoredAccount,
)
from .storage import Storage, read_json, read_list, remove_key, write_json

logger = logging.getLogger(__name__)

OUTCOME_COUNTERS: Dict[str, str] = {"win": "wins", "loss": "losses", "draw": "draws"}
STREAK_WINDOW = 10


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class Session:
    """Handle for the logged-in account. Holds a copy, not the stored record."""

    account: Account

    @property
    def account_id(self) -> str:
        return self.account.id

    @property
    def username(self) -> str:
        return self.account.username

    def refresh(self, store: "AccountStore") -> Account:
        latest = store.get(self.account.id)
        if latest is not None:
            self.account = latest
        return self.account


@dataclass
class LeaderboardEntry:
    id: str
    username: str
    wins: int
    losses: int
    draws: int
    total_games: int
    win_rate: float
    score: int

    def as_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "username": self.username,
            "wins": self.wins,
            "losses": self.losses,
            "draws": self.draws,
            "totalGames": self.total_games,
            "winRate": self.win_rate,
            "score": self.score,
        }


_SORTERS: Dict[str, Callable[[LeaderboardEntry], Tuple[float, float]]] = {
    "score": lambda e: (e.score, e.win_rate),
    "wins": lambda e: (e.wins, e.win_rate),
    "winRate": lambda e: (e.win_rate, e.total_games),
    "totalGames": lambda e: (e.total_games, e.win_rate),
}


class AccountStore:
    """Accounts persisted under the ``users`` key.

    Every method re-reads the whole collection and writes the whole
    collection back. Two processes updating at once lose one update.
    """

    def __init__(self, storage: Storage, clock: Callable[[], float] = time.time) -> None:
        self.storage = storage
        self.clock = clock

    # ---- persistence ----

    def _load(self) -> List[StoredAccount]:
        accounts: List[StoredAccount] = []
        for raw in read_list(self.storage, USERS_KEY):
            try:
                accounts.append(StoredAccount.model_validate(raw))
            except ValidationError:
                logger.warning("Skipping malformed account record: %r", raw)
        return accounts

    def _save(self, accounts: List[StoredAccount]) -> None:
        write_json(self.storage, USERS_KEY, [a.dump() for a in accounts])

    def _new_id(self, accounts: List[StoredAccount]) -> str:
        taken = {a.id for a in accounts}
        candidate = int(self.clock() * 1000)
        while str(candidate) in taken:
            candidate += 1
        return str(candidate)

    # ---- accounts ----

    def get(self, account_id: str) -> Optional[Account]:
        for account in self._load():
            if account.id == account_id:
                return account.public()
        return None

    def accounts(self) -> List[Account]:
        return [a.public() for a in self._load()]

    def register(self, username: str, password: str) -> Session:
        if not username or not username.strip():
            raise ValueError("Username is required")
        if not password:
            raise ValueError("Password is required")

        accounts = self._load()
        if any(a.username == username for a in accounts):
            raise DuplicateAccountName(username)

        stored = StoredAccount(
            id=self._new_id(accounts),
            username=username,
            password=password,
            created_at=_iso_now(),
        )
        accounts.append(stored)
        self._save(accounts)
        logger.info("Registered account %s (%s)", stored.username, stored.id)
        return self._start_session(stored.public())

    def authenticate(self, username: str, password: str) -> Session:
        for account in self._load():
            if account.username == username and account.password == password:
                logger.info("Account %s logged in", username)
                return self._start_session(account.public())
        raise InvalidCredentials()

    # ---- session ----

    def _start_session(self, account: Account) -> Session:
        write_json(self.storage, CURRENT_USER_KEY, account.dump())
        return Session(account=account)

    def current_session(self) -> Optional[Session]:
        raw = read_json(self.storage, CURRENT_USER_KEY)
        if raw is None:
            return None
        try:
            return Session(account=Account.model_validate(raw))
        except ValidationError:
            logger.error("Stored session is unreadable; clearing it")
            remove_key(self.storage, CURRENT_USER_KEY)
            return None

    def end_session(self) -> None:
        remove_key(self.storage, CURRENT_USER_KEY)

    # ---- results ----

    def record_result(self, account_id: str, outcome: Outcome) -> Optional[Account]:
        """Bump one counter and append a history record.

        Returns the updated account, or ``None`` when the id is unknown.
        """

        counter = OUTCOME_COUNTERS.get(outcome)
        if counter is None:
            raise ValueError(f"Unknown outcome {outcome!r}")

        updated: Optional[Account] = None
        accounts = self._load()
        for account in accounts:
            if account.id == account_id:
                setattr(account, counter, getattr(account, counter) + 1)
                updated = account.public()
                break
        if updated is None:
            logger.warning("Recording %s for unknown account %s", outcome, account_id)
        else:
            self._save(accounts)
            current = read_json(self.storage, CURRENT_USER_KEY)
            if isinstance(current, dict) and current.get("id") == account_id:
                write_json(self.storage, CURRENT_USER_KEY, updated.dump())

        self._append_history(account_id, outcome)
        return updated

    def _append_history(self, account_id: str, outcome: Outcome) -> None:
        history = read_list(self.storage, HISTORY_KEY)
        record = GameHistoryRecord(
            id=str(int(self.clock() * 1000)),
            user_id=account_id,
            result=outcome,
            timestamp=_iso_now(),
        )
        history.append(record.dump())
        write_json(self.storage, HISTORY_KEY, history)

    def history(self, account_id: str, limit: Optional[int] = None) -> List[GameHistoryRecord]:
        """Records for one account, most recent first."""

        records: List[GameHistoryRecord] = []
        for raw in read_list(self.storage, HISTORY_KEY):
            try:
                record = GameHistoryRecord.model_validate(raw)
            except ValidationError:
                logger.warning("Skipping malformed history record: %r", raw)
                continue
            if record.user_id == account_id:
                records.append(record)
        records.reverse()
        return records[:limit] if limit is not None else records

    def streak(self, account_id: str) -> Tuple[str, int]:
        recent = self.history(account_id, limit=STREAK_WINDOW)
        if not recent:
            return "", 0
        kind = recent[0].result
        count = 0
        for record in recent:
            if record.result != kind:
                break
            count += 1
        return kind, count

    # ---- leaderboard ----

    def leaderboard(self, sort_by: str = "score") -> List[LeaderboardEntry]:
        if sort_by not in _SORTERS:
            raise ValueError(f"Unsupported sort key {sort_by!r}")
        entries = []
        for a in self._load():
            total = a.total_games
            if total == 0:
                continue
            entries.append(
                LeaderboardEntry(
                    id=a.id,
                    username=a.username,
                    wins=a.wins,
                    losses=a.losses,
                    draws=a.draws,
                    total_games=total,
                    win_rate=a.wins / total * 100,
                    score=max(0, a.wins * 3 + a.draws),
                )
            )
        entries.sort(key=_SORTERS[sort_by], reverse=True)
        return entries

    def rank_of(self, account_id: str, sort_by: str = "score") -> Optional[int]:
        for position, entry in enumerate(self.leaderboard(sort_by), start=1):
            if entry.id == account_id:
                return position
        return None
