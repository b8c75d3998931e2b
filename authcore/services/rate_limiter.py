# authcore/services/rate_limiter.py
import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Protocol, Tuple

import redis.asyncio as aioredis
from loguru import logger
from redis.exceptions import RedisError

from authcore.core.config import Settings
from authcore.core.exceptions import CounterStoreUnavailableError


class CounterStore(Protocol):
    """Contador atômico compartilhado entre instâncias do serviço."""

    async def increment_with_expiry(self, key: str, ttl_seconds: int) -> int:
        ...

    async def get_ttl(self, key: str) -> int:
        ...

    async def close(self) -> None:
        ...


class RedisCounterStore:
    # INCR e EXPIRE no mesmo round trip; o TTL só é definido quando a janela nasce
    # (count == 1), senão a janela nunca fecharia
    INCREMENT_WITH_EXPIRY_SCRIPT = """
    local current = redis.call('INCR', KEYS[1])
    if current == 1 then
        redis.call('EXPIRE', KEYS[1], tonumber(ARGV[1]))
    end
    return current
    """

    def __init__(self, redis_url: str, *, timeout: float = 1.0):
        self.client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
        )
        self._increment = self.client.register_script(self.INCREMENT_WITH_EXPIRY_SCRIPT)

    async def increment_with_expiry(self, key: str, ttl_seconds: int) -> int:
        return int(await self._increment(keys=[key], args=[ttl_seconds]))

    async def get_ttl(self, key: str) -> int:
        return int(await self.client.ttl(key))

    async def close(self) -> None:
        await self.client.aclose()


class MemoryCounterStore:
    """
    Contador em memória do processo.

    Só serve para uma única instância (dev/testes): o limite não é
    compartilhado entre processos.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic, sweep_interval_seconds: float = 60.0):
        self._clock = clock
        self._counters: Dict[str, Tuple[int, float]] = {}
        self._sweep_interval = sweep_interval_seconds
        self._next_sweep = 0.0

    def _sweep(self) -> None:
        # Janelas fechadas de clientes que não voltaram saem daqui, no máximo uma varredura por intervalo
        now = self._clock()
        if now < self._next_sweep:
            return
        expired = [key for key, (_, expires_at) in self._counters.items() if expires_at <= now]
        for key in expired:
            del self._counters[key]
        self._next_sweep = now + self._sweep_interval

    def _live(self, key: str) -> Optional[Tuple[int, float]]:
        entry = self._counters.get(key)
        if entry is not None and entry[1] <= self._clock():
            del self._counters[key]
            return None
        return entry

    async def increment_with_expiry(self, key: str, ttl_seconds: int) -> int:
        self._sweep()
        entry = self._live(key)
        if entry is None:
            self._counters[key] = (1, self._clock() + ttl_seconds)
            return 1
        count, expires_at = entry
        self._counters[key] = (count + 1, expires_at)
        return count + 1

    async def get_ttl(self, key: str) -> int:
        entry = self._live(key)
        if entry is None:
            return -2  # mesma semântica do TTL do Redis para chave inexistente
        return max(0, int(round(entry[1] - self._clock())))

    async def close(self) -> None:
        self._counters.clear()


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    retry_after: int
    reset_at: datetime

    def headers(self) -> Dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(int(self.reset_at.timestamp())),
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after)
        return headers


class RateLimiter:
    """Janela fixa: um contador por (propósito, cliente) com TTL igual à janela."""

    def __init__(
        self,
        *,
        limit: int,
        window_seconds: int,
        key_prefix: str,
        store: CounterStore,
        fail_open: bool = True,
    ):
        self.limit = limit
        self.window_seconds = window_seconds
        self.key_prefix = key_prefix
        self.store = store
        self.fail_open = fail_open

    def key_for(self, discriminator: str) -> str:
        return f"ratelimit:{self.key_prefix}:{discriminator}"

    async def hit(self, discriminator: str) -> RateLimitResult:
        key = self.key_for(discriminator)
        now = datetime.now(timezone.utc)
        try:
            count = await self.store.increment_with_expiry(key, self.window_seconds)
            ttl = await self.store.get_ttl(key)
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            if not self.fail_open:
                logger.error(f"Rate limiting ({self.key_prefix}) indisponível - recusando requisição (fail-closed): {e}")
                raise CounterStoreUnavailableError()
            # Fail-open: uma queda do contador não derruba a API, mas o throttle fica desligado
            logger.error(f"Rate limiting ({self.key_prefix}) indisponível - liberando requisição (fail-open): {e}")
            return RateLimitResult(
                allowed=True, limit=self.limit, remaining=self.limit, retry_after=0, reset_at=now
            )

        if ttl < 0:
            ttl = self.window_seconds
        result = RateLimitResult(
            allowed=count <= self.limit,
            limit=self.limit,
            remaining=max(0, self.limit - count),
            retry_after=ttl,
            reset_at=now + timedelta(seconds=ttl),
        )
        if not result.allowed:
            logger.warning(
                f"Rate limit excedido ({self.key_prefix}): cliente={discriminator} contagem={count} limite={self.limit}"
            )
        return result


def build_counter_store(settings: Settings) -> CounterStore:
    if settings.REDIS_URL:
        return RedisCounterStore(settings.REDIS_URL, timeout=settings.COUNTER_STORE_TIMEOUT_SECONDS)
    logger.warning("REDIS_URL não configurada: usando contador em memória (limites não são compartilhados entre instâncias)")
    return MemoryCounterStore()


def build_rate_limiters(settings: Settings, store: CounterStore) -> Dict[str, RateLimiter]:
    limits = {
        "register": (settings.REGISTER_RATE_LIMIT, settings.REGISTER_RATE_LIMIT_WINDOW_SECONDS),
        "login": (settings.LOGIN_RATE_LIMIT, settings.LOGIN_RATE_LIMIT_WINDOW_SECONDS),
        "refresh": (settings.REFRESH_RATE_LIMIT, settings.REFRESH_RATE_LIMIT_WINDOW_SECONDS),
    }
    return {
        purpose: RateLimiter(
            limit=limit,
            window_seconds=window,
            key_prefix=purpose,
            store=store,
            fail_open=settings.RATE_LIMIT_FAIL_OPEN,
        )
        for purpose, (limit, window) in limits.items()
    }
