"""Helpers for classifying upstream provider responses."""

import httpx

from repodeploy.core.exceptions import AuthError, RateLimited, RepoDeployError

# Headers providers use to report an exhausted rate limit
_REMAINING_HEADERS = ("x-ratelimit-remaining", "ratelimit-remaining")
_RESET_HEADERS = ("retry-after", "x-ratelimit-reset", "ratelimit-reset")


def error_message(response: httpx.Response) -> str:
    """Pull a human-readable message out of an error response."""
    try:
        payload = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        errors = payload.get("errors")
        if isinstance(errors, list) and errors and isinstance(errors[0], dict):
            if errors[0].get("message"):
                return str(errors[0]["message"])
        for key in ("message", "error_description", "error"):
            if isinstance(payload.get(key), str) and payload[key]:
                return payload[key]

    text = response.text.strip()[:200] if response.content else ""
    reason = response.reason_phrase or f"HTTP {response.status_code}"
    return f"{reason} - {text}" if text else reason


def is_rate_limited(response: httpx.Response) -> bool:
    if response.status_code == 429:
        return True
    if response.status_code == 403:
        return any(response.headers.get(h) == "0" for h in _REMAINING_HEADERS)
    return False


def check_auth_and_throttle(response: httpx.Response, provider: str) -> None:
    """Raise AuthError or RateLimited for responses that warrant it."""
    if is_rate_limited(response):
        retry_after = next(
            (response.headers[h] for h in _RESET_HEADERS if h in response.headers),
            None,
        )
        raise RateLimited(
            f"{provider} rate limit exceeded: {error_message(response)}",
            retry_after=retry_after,
        )
    if response.status_code in (401, 403):
        raise AuthError(
            f"{provider} rejected the credential: {error_message(response)}",
            provider=provider.lower(),
        )


def raise_for_upstream(
    response: httpx.Response,
    provider: str,
    action: str,
    error_cls: type[RepoDeployError],
) -> None:
    """Classify a non-2xx response, raising ``error_cls`` for anything else."""
    if response.is_success:
        return
    check_auth_and_throttle(response, provider)
    raise error_cls(f"Failed to {action}: {error_message(response)}")
