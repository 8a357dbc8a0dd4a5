"""
Unified HTTP transport policy for upstream feed requests.
"""

from dataclasses import dataclass

from httpx import AsyncBaseTransport, AsyncClient, Limits, Timeout

from config import config


@dataclass(frozen=True)
class TransportPolicy:
    trust_env: bool
    connect_timeout: float
    read_timeout: float
    write_timeout: float
    pool_timeout: float
    max_connections: int
    max_keepalive_connections: int
    user_agent: str


def get_transport_policy() -> TransportPolicy:
    api = config.api
    return TransportPolicy(
        trust_env=api.trust_env,
        connect_timeout=api.connect_timeout,
        read_timeout=api.read_timeout,
        write_timeout=api.write_timeout,
        pool_timeout=api.pool_timeout,
        max_connections=api.max_connections,
        max_keepalive_connections=api.max_keepalive_connections,
        user_agent=api.user_agent,
    )


def build_timeout(policy: TransportPolicy) -> Timeout:
    return Timeout(
        connect=policy.connect_timeout,
        read=policy.read_timeout,
        write=policy.write_timeout,
        pool=policy.pool_timeout,
    )


def build_limits(policy: TransportPolicy) -> Limits:
    return Limits(
        max_connections=policy.max_connections,
        max_keepalive_connections=policy.max_keepalive_connections,
    )


def create_async_client(
    *,
    transport: AsyncBaseTransport | None = None,
    trust_env: bool | None = None,
) -> AsyncClient:
    """
    Build the shared client for one collection run.

    `transport` lets tests substitute an httpx.MockTransport; redirects are
    followed because several upstreams answer with a canonical-host redirect.
    """
    policy = get_transport_policy()
    return AsyncClient(
        limits=build_limits(policy),
        timeout=build_timeout(policy),
        trust_env=policy.trust_env if trust_env is None else trust_env,
        headers={"User-Agent": policy.user_agent, "Accept": "application/json"},
        follow_redirects=True,
        transport=transport,
    )
