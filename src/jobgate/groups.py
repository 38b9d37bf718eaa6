"""Group membership resolution with a TTL-bounded cache.

Design notes:
- The cache is an explicit object injected where needed, never a module global
- Entries are keyed by (provider, user_id, group_id) so partial lookups are reused
- Resolver failures raise GroupResolutionError; callers fail closed
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Iterable

from .errors import GroupResolutionError

_logger = logging.getLogger(__name__)

GroupResolver = Callable[[list[str]], Awaitable[list[str]]]


@dataclass
class GroupMembershipCache:
    """Remembers membership answers for ``ttl_seconds``."""

    ttl_seconds: float
    clock: Callable[[], float] = field(default=time.monotonic)
    _entries: dict[tuple[str, str, str], tuple[float, bool]] = field(
        default_factory=dict, init=False, repr=False
    )

    def lookup(
        self, provider: str, user_id: str, group_ids: Iterable[str]
    ) -> tuple[set[str], list[str]]:
        """Return (known member group ids, group ids still needing resolution)."""
        now = self.clock()
        members: set[str] = set()
        missing: list[str] = []
        for group_id in group_ids:
            entry = self._entries.get((provider, user_id, group_id))
            if entry is None or entry[0] <= now:
                missing.append(group_id)
            elif entry[1]:
                members.add(group_id)
        return members, missing

    def store(
        self, provider: str, user_id: str, checked: Iterable[str], members: Iterable[str]
    ) -> None:
        expires_at = self.clock() + self.ttl_seconds
        member_set = set(members)
        for group_id in checked:
            self._entries[(provider, user_id, group_id)] = (expires_at, group_id in member_set)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


def filter_member_groups(member_group_ids: Iterable[str], candidate_group_ids: Iterable[str]) -> list[str]:
    """Intersect an actor's known groups (e.g. Discord role ids) with candidate ids."""
    members = set(member_group_ids)
    return [group_id for group_id in candidate_group_ids if group_id in members]


@dataclass(frozen=True, slots=True)
class CachedGroupResolver:
    """Wraps a per-actor resolver with a shared membership cache.

    Usage:
        cache = GroupMembershipCache(ttl_seconds=60)
        resolver = CachedGroupResolver(cache, "slack", "U1", slack_usergroup_lookup)
        await service.authorize(ActorContext(..., resolve_groups=resolver), action)
    """

    cache: GroupMembershipCache
    provider: str
    user_id: str
    resolver: GroupResolver

    async def __call__(self, candidate_group_ids: list[str]) -> list[str]:
        if not candidate_group_ids:
            return []
        members, missing = self.cache.lookup(self.provider, self.user_id, candidate_group_ids)
        if missing:
            try:
                resolved = await self.resolver(missing)
            except Exception as exc:
                _logger.warning(
                    "Group resolution failed for %s user %s: %s", self.provider, self.user_id, exc
                )
                raise GroupResolutionError(str(exc)) from exc
            resolved_set = set(resolved).intersection(missing)
            self.cache.store(self.provider, self.user_id, missing, resolved_set)
            members.update(resolved_set)
        return [group_id for group_id in candidate_group_ids if group_id in members]
