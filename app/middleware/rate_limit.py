"""Per-client request throttling.

Voting links are bearer tokens, so the endpoints that accept a raw token
get tighter per-minute and per-hour budgets to slow down guessing. Counters
are fixed windows kept in process memory.
"""

import re
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

RATE_LIMIT_MESSAGE = "Too many requests. Please try again later."

UNLIMITED_PATHS = ("/health",)


@dataclass
class RateLimitRule:
    """A request budget for paths matching ``path_pattern``.

    A rule without a pattern is the fallback for paths no other rule matches.
    """

    name: str
    requests: int
    window_seconds: int
    path_pattern: Optional[str] = None
    _compiled: Optional[re.Pattern] = field(default=None, init=False, repr=False)

    def __post_init__(self):
        if self.path_pattern:
            self._compiled = re.compile(self.path_pattern)

    @property
    def is_fallback(self) -> bool:
        return self._compiled is None

    def matches(self, path: str) -> bool:
        if self._compiled is None:
            return True
        return self._compiled.match(path) is not None


@dataclass
class WindowCounter:
    count: int = 0
    window_start: float = 0.0


@dataclass
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_at: int


class RateLimitStore:
    """Fixed-window counters keyed by client and rule name."""

    def __init__(self, cleanup_interval: int = 60):
        self._counters: dict[tuple[str, str], WindowCounter] = defaultdict(WindowCounter)
        self._cleanup_interval = cleanup_interval
        self._last_cleanup = 0.0

    def __len__(self) -> int:
        return len(self._counters)

    def _prune(self, now: float, max_window: int) -> None:
        if now - self._last_cleanup < self._cleanup_interval:
            return
        stale = [
            key
            for key, counter in self._counters.items()
            if now - counter.window_start > max_window
        ]
        for key in stale:
            del self._counters[key]
        self._last_cleanup = now

    def hit(self, client_id: str, rule: RateLimitRule, now: Optional[float] = None) -> RateLimitDecision:
        """Count one request against ``rule`` unless its budget is spent."""
        now = time.time() if now is None else now
        self._prune(now, rule.window_seconds * 2)

        counter = self._counters[(client_id, rule.name)]
        if now - counter.window_start >= rule.window_seconds:
            counter.count = 0
            counter.window_start = now

        reset_at = int(counter.window_start + rule.window_seconds)
        if counter.count >= rule.requests:
            return RateLimitDecision(False, rule.requests, 0, reset_at)

        counter.count += 1
        return RateLimitDecision(
            True, rule.requests, max(0, rule.requests - counter.count), reset_at
        )


TOKEN_ENDPOINTS = (
    r"^/api/(vote/resolve|weather-vote/context)$"
    r"|^/weather/vote(/[^/]+)?/?$"
    r"|^/vote/[^/]+/?$"
)

DEFAULT_RULES = [
    RateLimitRule("token-minute", requests=10, window_seconds=60, path_pattern=TOKEN_ENDPOINTS),
    RateLimitRule("token-hour", requests=60, window_seconds=3600, path_pattern=TOKEN_ENDPOINTS),
    RateLimitRule("pages", requests=60, window_seconds=60, path_pattern=r"^/(weather/)?vote/"),
    RateLimitRule("api", requests=60, window_seconds=60, path_pattern=r"^/api/"),
    RateLimitRule("default", requests=120, window_seconds=60),
]


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Reject clients that exceed any matching rule with a 429.

    Every rule whose pattern matches the path is applied; the fallback rule
    only applies when nothing else matched. Responses carry
    ``X-RateLimit-*`` headers for the tightest matching rule.
    """

    def __init__(
        self,
        app,
        rules: Optional[list[RateLimitRule]] = None,
        store: Optional[RateLimitStore] = None,
    ):
        super().__init__(app)
        self.rules = rules if rules is not None else DEFAULT_RULES
        self.store = store if store is not None else RateLimitStore()

    def _get_client_id(self, request: Request) -> str:
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()
        if request.client:
            return request.client.host
        return "unknown"

    def rules_for(self, path: str) -> list[RateLimitRule]:
        matched = [rule for rule in self.rules if not rule.is_fallback and rule.matches(path)]
        if matched:
            return matched
        return [rule for rule in self.rules if rule.is_fallback][:1]

    @staticmethod
    def _set_headers(response: Response, decision: RateLimitDecision) -> Response:
        response.headers["X-RateLimit-Limit"] = str(decision.limit)
        response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
        response.headers["X-RateLimit-Reset"] = str(decision.reset_at)
        return response

    async def dispatch(self, request: Request, call_next) -> Response:
        path = request.url.path
        rules = self.rules_for(path)
        if path in UNLIMITED_PATHS or not rules:
            return await call_next(request)

        client_id = self._get_client_id(request)
        decisions = [self.store.hit(client_id, rule) for rule in rules]

        blocked = [decision for decision in decisions if not decision.allowed]
        if blocked:
            decision = max(blocked, key=lambda item: item.reset_at)
            retry_after = max(0, decision.reset_at - int(time.time()))
            response = JSONResponse(content={"message": RATE_LIMIT_MESSAGE}, status_code=429)
            response.headers["Retry-After"] = str(retry_after)
            return self._set_headers(response, decision)

        response = await call_next(request)
        return self._set_headers(response, min(decisions, key=lambda item: item.remaining))
