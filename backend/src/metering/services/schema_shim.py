"""Usage counter key layout selection during the rolling-window rollout.

Two physical layouts coexist:

- ``rolling``: ``usage:<feature>:<ownerType>:<ownerId>`` with a native TTL
- ``legacy``: ``usage-month:<feature>:<ownerType>:<ownerId>:<YYYYMM>``
  without TTL, expiry decided by the stored ``resetAt``

The flag is evaluated on every call, so flipping it switches new writes
immediately while records under the other layout stay readable until they
expire. There is no migration job.
"""
import time
from dataclasses import dataclass
from typing import Callable, Literal

from metering.config import Settings
from metering.keys import legacy_monthly_key, rolling_daily_key

Schema = Literal["rolling", "legacy"]


def rolling_window_flag() -> bool:
    """Read the rollout flag from a fresh settings instance (environment and .env)."""
    return Settings().usage_rolling_window


@dataclass(frozen=True)
class ResolvedKey:
    schema: Schema
    key: str


class SchemaMigrationShim:
    """Resolve which usage key layout an owner's counter uses."""

    def __init__(self, flag: Callable[[], bool] = rolling_window_flag, clock: Callable[[], float] = time.time):
        self._flag = flag
        self._clock = clock

    def active_schema(self) -> Schema:
        return "rolling" if self._flag() else "legacy"

    def key_for(self, schema: Schema, feature: str, owner_type: str, owner_id: str) -> str:
        if schema == "rolling":
            return rolling_daily_key(feature, owner_type, owner_id)
        return legacy_monthly_key(feature, owner_type, owner_id, self._clock())

    def resolve(self, feature: str, owner_type: str, owner_id: str) -> ResolvedKey:
        schema = self.active_schema()
        return ResolvedKey(schema=schema, key=self.key_for(schema, feature, owner_type, owner_id))
