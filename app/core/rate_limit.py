"""
In-memory sliding-window rate limits, per client IP and bucket.

Buckets: "auth" for signup/login, "checkout" for routes that create Stripe
Checkout sessions. State is per process.
"""
import logging
import time
from collections import defaultdict
from typing import Dict, List, Tuple
from fastapi import Request, HTTPException, status

from app.core import config

logger = logging.getLogger(__name__)

# (bucket, client ip) -> request timestamps inside the current window
rate_limit_store: Dict[Tuple[str, str], List[float]] = defaultdict(list)


def get_client_ip(request: Request) -> str:
    """Client IP, preferring the first X-Forwarded-For hop set by the proxy."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client:
        return request.client.host
    return "unknown"


def check_rate_limit(request: Request, bucket: str, max_requests: int, window_seconds: int) -> None:
    """
    Record a request in a bucket, rejecting it once the window is full.

    Raises:
        HTTPException: 429 if the client has used up the bucket
    """
    key = (bucket, get_client_ip(request))
    now = time.time()
    cutoff = now - window_seconds
    recent = [t for t in rate_limit_store[key] if t > cutoff]

    if len(recent) >= max_requests:
        rate_limit_store[key] = recent
        logger.warning(f"Rate limit exceeded: bucket={bucket}, ip={key[1]} ({len(recent)} in {window_seconds}s)")
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=f"Rate limit exceeded. Maximum {max_requests} requests per {window_seconds} seconds."
        )

    recent.append(now)
    rate_limit_store[key] = recent


def auth_rate_limit(request: Request) -> None:
    check_rate_limit(request, "auth", config.AUTH_RATE_LIMIT, config.RATE_LIMIT_WINDOW_SECONDS)


def checkout_rate_limit(request: Request) -> None:
    check_rate_limit(request, "checkout", config.CHECKOUT_RATE_LIMIT, config.RATE_LIMIT_WINDOW_SECONDS)
