from __future__ import annotations

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

from clinicslots.ledger.models import ConfigurationError


def _int_env(name: str, default: int | None) -> int | None:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigurationError(f"Invalid {name} value: {raw!r}. Expected an integer.") from e


def _parse_chat_ids(raw: str | None) -> tuple[str, ...]:
    # TELEGRAM_CHAT_ID accepts one id or a comma-separated list; duplicates are dropped.
    if not raw:
        return ()
    result: list[str] = []
    for part in (p.strip() for p in raw.split(",")):
        if not part or part in result:
            continue
        try:
            int(part)
        except ValueError as e:
            raise ConfigurationError(f"Invalid TELEGRAM_CHAT_ID value: {part!r}. Expected integer chat id.") from e
        result.append(part)
    return tuple(result)


@dataclass(frozen=True)
class Settings:
    # Durable backend; None keeps the ledger in memory.
    database_path: str | None = None

    # Daily limits. A None limit is treated as zero capacity.
    capacity_consultation: int | None = 15
    capacity_consultation_wednesday: int | None = 10
    capacity_reimbursement: int | None = 20

    # How many times an allocation is recomputed after losing a ticket race.
    allocation_attempts: int = 3

    cron_secret: str | None = None
    clinic_timezone: str = "America/Caracas"

    telegram_bot_token: str | None = None
    telegram_chat_ids: tuple[str, ...] = field(default_factory=tuple)

    report_dir: str = "reports"
    secret_key: str = "clinic-slots-secret"

    @property
    def capacity_limits(self) -> dict[str, int]:
        limits = {
            "consultation": self.capacity_consultation,
            "consultation_wednesday": self.capacity_consultation_wednesday,
            "reimbursement": self.capacity_reimbursement,
        }
        return {key: value for key, value in limits.items() if value is not None}

    @property
    def telegram_enabled(self) -> bool:
        return bool(self.telegram_bot_token and self.telegram_chat_ids)


def load_settings(dotenv_path: str | None = None) -> Settings:
    # Prefer .env in the working directory; dotenv_path allows overriding in tests.
    load_dotenv(dotenv_path=dotenv_path, override=False)

    allocation_attempts = _int_env("ALLOCATION_ATTEMPTS", 3)
    if allocation_attempts < 1:
        raise ConfigurationError("ALLOCATION_ATTEMPTS must be >= 1")

    return Settings(
        database_path=os.getenv("CLINIC_DATABASE_PATH") or None,
        capacity_consultation=_int_env("CAPACITY_CONSULTATION", 15),
        capacity_consultation_wednesday=_int_env("CAPACITY_CONSULTATION_WEDNESDAY", 10),
        capacity_reimbursement=_int_env("CAPACITY_REIMBURSEMENT", 20),
        allocation_attempts=allocation_attempts,
        cron_secret=os.getenv("CRON_SECRET") or None,
        clinic_timezone=os.getenv("CLINIC_TIMEZONE", "America/Caracas"),
        telegram_bot_token=os.getenv("TELEGRAM_BOT_TOKEN") or None,
        telegram_chat_ids=_parse_chat_ids(os.getenv("TELEGRAM_CHAT_ID")),
        report_dir=os.getenv("REPORT_DIR", "reports"),
        secret_key=os.getenv("SECRET_KEY", "clinic-slots-secret"),
    )
