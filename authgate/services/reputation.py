"""Per-IP reputation kept in the shared key-value store.

Scores run from 0 (hostile) to 100 (trusted). Every IP starts at 100, loses
``10 + 2 * violations`` on each violation and earns 0.5 back per clean
request. Allow/deny entries are standing decisions with no expiry.
"""
from dataclasses import asdict, dataclass
from typing import Iterable, Optional
import json
import logging
import time

from authgate.cache.store import KeyValueStore
from authgate.core.config import settings

logger = logging.getLogger(__name__)

MAX_SCORE = 100.0
CLEAN_BONUS = 0.5
AUTO_BLACKLIST_SCORE = 10
AUTO_BLACKLIST_VIOLATIONS = 10
_CAS_RETRIES = 5


@dataclass
class IPReputation:
    score: float = MAX_SCORE
    violation_count: int = 0
    last_violation: Optional[float] = None
    whitelisted: bool = False
    blacklisted: bool = False


class IPReputationTracker:
    def __init__(
        self,
        store: KeyValueStore,
        whitelisted: Iterable[str] = (),
        blacklisted: Iterable[str] = (),
        ttl: Optional[int] = None,
    ):
        self.store = store
        self.ttl = ttl
        for ip in whitelisted:
            self.whitelist(ip)
        for ip in blacklisted:
            self.blacklist(ip)

    @staticmethod
    def _score_key(ip: str) -> str:
        return f"reputation:{ip}"

    @staticmethod
    def _allow_key(ip: str) -> str:
        return f"ip:allow:{ip}"

    @staticmethod
    def _deny_key(ip: str) -> str:
        return f"ip:deny:{ip}"

    def is_whitelisted(self, ip: str) -> bool:
        return self.store.get(self._allow_key(ip)) is not None

    def is_blacklisted(self, ip: str) -> bool:
        return self.store.get(self._deny_key(ip)) is not None

    def whitelist(self, ip: str):
        self.store.delete(self._deny_key(ip))
        self.store.set(self._allow_key(ip), "1")

    def blacklist(self, ip: str):
        self.store.delete(self._allow_key(ip))
        self.store.set(self._deny_key(ip), "1")

    def remove(self, ip: str):
        for key in (self._allow_key(ip), self._deny_key(ip), self._score_key(ip)):
            self.store.delete(key)

    def _load(self, raw: Optional[str]) -> IPReputation:
        if not raw:
            return IPReputation()
        data = json.loads(raw)
        return IPReputation(
            score=float(data.get("score", MAX_SCORE)),
            violation_count=int(data.get("violation_count", 0)),
            last_violation=data.get("last_violation"),
        )

    def get(self, ip: str) -> IPReputation:
        reputation = self._load(self.store.get(self._score_key(ip)))
        reputation.whitelisted = self.is_whitelisted(ip)
        reputation.blacklisted = self.is_blacklisted(ip)
        return reputation

    def _update(self, ip: str, mutate) -> IPReputation:
        key = self._score_key(ip)
        for _ in range(_CAS_RETRIES):
            raw = self.store.get(key)
            reputation = self._load(raw)
            mutate(reputation)
            payload = json.dumps({
                "score": reputation.score,
                "violation_count": reputation.violation_count,
                "last_violation": reputation.last_violation,
            })
            if self.store.compare_and_set(key, raw, payload, ttl=self.ttl):
                return reputation
        logger.warning(f"Gave up updating reputation for {ip} after {_CAS_RETRIES} conflicts")
        return reputation

    def record_violation(self, ip: str) -> IPReputation:
        def apply(rep: IPReputation):
            rep.violation_count += 1
            rep.last_violation = time.time()
            rep.score = max(0.0, rep.score - (10 + rep.violation_count * 2))

        reputation = self._update(ip, apply)
        if reputation.score <= AUTO_BLACKLIST_SCORE and reputation.violation_count >= AUTO_BLACKLIST_VIOLATIONS:
            if not self.is_whitelisted(ip) and not self.is_blacklisted(ip):
                self.blacklist(ip)
                logger.warning(
                    f"IP {ip} auto-blacklisted (score={reputation.score}, "
                    f"violations={reputation.violation_count})"
                )
            reputation.blacklisted = self.is_blacklisted(ip)
        return reputation

    def record_clean(self, ip: str) -> IPReputation:
        def apply(rep: IPReputation):
            rep.score = min(MAX_SCORE, rep.score + CLEAN_BONUS)

        return self._update(ip, apply)

    def multiplier(self, ip: Optional[str]) -> float:
        """Rate-limit scaling for ``ip``; most severe band wins."""
        if not ip:
            return 1.0
        score = self._load(self.store.get(self._score_key(ip))).score
        if score <= 10:
            return 0.1
        if score <= 30:
            return 0.5
        if score >= 90:
            return 1.2
        return 1.0

    def to_dict(self, ip: str) -> dict:
        return asdict(self.get(ip))


def build_tracker(store: KeyValueStore) -> IPReputationTracker:
    return IPReputationTracker(
        store,
        whitelisted=settings.WHITELISTED_IPS,
        blacklisted=settings.BLACKLISTED_IPS,
        ttl=settings.REPUTATION_TTL_SECONDS,
    )
