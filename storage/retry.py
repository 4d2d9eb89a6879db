"""
Retry/backoff and rate-limit-aware HTTP request helper.
This module centralizes request retry logic so the REST client (ingest.client) can use it.
"""

import os
import time
import random
import email.utils
from datetime import datetime, timezone
from typing import Optional, Dict, Any, Tuple
import requests

# retry/backoff defaults from environment
DEFAULT_MAX_RETRIES = int(os.getenv("CHANGESET_MAX_RETRIES", "3"))
DEFAULT_BACKOFF_BASE = float(os.getenv("CHANGESET_BACKOFF_BASE", "0.5"))
_env_jitter = os.getenv("CHANGESET_BACKOFF_JITTER")
DEFAULT_BACKOFF_JITTER = float(_env_jitter) if _env_jitter is not None and _env_jitter != "" else None
DEFAULT_MAX_BACKOFF = float(os.getenv("CHANGESET_MAX_BACKOFF", "120.0"))
DEFAULT_TIMEOUT = float(os.getenv("CHANGESET_HTTP_TIMEOUT", "30.0"))

# runtime-overrides
_runtime_max_retries: Optional[int] = None
_runtime_backoff_base: Optional[float] = None
_runtime_backoff_jitter: Optional[float] = None
_runtime_max_backoff: Optional[float] = None


def configure_retry(
    max_retries: Optional[int] = None, backoff_base: Optional[float] = None, backoff_jitter: Optional[float] = None, max_backoff: Optional[float] = None
):
    """Configure retry/backoff defaults at runtime (e.g. from CLI)."""
    global _runtime_max_retries, _runtime_backoff_base, _runtime_backoff_jitter, _runtime_max_backoff
    if max_retries is not None:
        _runtime_max_retries = int(max_retries)
    if backoff_base is not None:
        _runtime_backoff_base = float(backoff_base)
    if backoff_jitter is not None:
        _runtime_backoff_jitter = float(backoff_jitter)
    if max_backoff is not None:
        _runtime_max_backoff = float(max_backoff)


def reset_retry_configuration():
    """Drop runtime overrides so environment defaults apply again."""
    global _runtime_max_retries, _runtime_backoff_base, _runtime_backoff_jitter, _runtime_max_backoff
    _runtime_max_retries = None
    _runtime_backoff_base = None
    _runtime_backoff_jitter = None
    _runtime_max_backoff = None


def _parse_retry_after(raw_ra: Optional[str]) -> Optional[float]:
    if not raw_ra:
        return None
    try:
        return float(raw_ra)
    except ValueError:
        try:
            dt = email.utils.parsedate_to_datetime(raw_ra)
        except (TypeError, ValueError):
            return None
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return max(0.0, (dt - datetime.now(timezone.utc)).total_seconds())


def _safe_number_from_headers(headers: Dict[str, Any], key: str, cast):
    val = headers.get(key)
    if val is None:
        return None
    try:
        return cast(val)
    except (TypeError, ValueError):
        return None


def _parse_rate_headers(resp) -> Tuple[Optional[float], Optional[int], Optional[float]]:
    headers = getattr(resp, 'headers', None) or {}
    ra = _parse_retry_after(headers.get('Retry-After'))
    rl_remaining = _safe_number_from_headers(headers, 'X-RateLimit-Remaining', int)
    rl_reset = _safe_number_from_headers(headers, 'X-RateLimit-Reset', float)
    return ra, rl_remaining, rl_reset


def _resolve_backoff_params(backoff_base_local: Optional[float], backoff_jitter_local: Optional[float], max_backoff_local: Optional[float]):
    if backoff_base_local is not None:
        base_local = float(backoff_base_local)
    elif _runtime_backoff_base is not None:
        base_local = float(_runtime_backoff_base)
    else:
        base_local = float(DEFAULT_BACKOFF_BASE)

    if backoff_jitter_local is not None:
        jitter_local = float(backoff_jitter_local)
    elif _runtime_backoff_jitter is not None:
        jitter_local = float(_runtime_backoff_jitter)
    elif DEFAULT_BACKOFF_JITTER is not None:
        jitter_local = float(DEFAULT_BACKOFF_JITTER)
    else:
        jitter_local = base_local

    if max_backoff_local is not None:
        max_backoff_resolved = float(max_backoff_local)
    elif _runtime_max_backoff is not None:
        max_backoff_resolved = float(_runtime_max_backoff)
    else:
        max_backoff_resolved = float(DEFAULT_MAX_BACKOFF)

    return base_local, jitter_local, max_backoff_resolved


def _parse_body(resp_local):
    if not getattr(resp_local, 'content', b'') and not getattr(resp_local, 'text', ''):
        return None
    try:
        return resp_local.json()
    except ValueError:
        return getattr(resp_local, 'text', None)


def _should_retry_response(status_code: int, ra_local: Optional[float], rl_remaining_local: Optional[int]) -> bool:
    if status_code in (429, 503):
        return True
    if status_code >= 400 and ra_local is not None:
        return True
    if rl_remaining_local is not None and rl_remaining_local <= 0 and status_code >= 400:
        return True
    return False


def _compute_wait_seconds(ra_local: Optional[float], rl_reset_local: Optional[float], backoff_local: float, jitter_local: float) -> float:
    if ra_local is not None:
        return min(float(ra_local) + random.uniform(0, jitter_local), 300.0)
    if rl_reset_local:
        wait = max(0.0, float(rl_reset_local) - time.time())
        return min(wait + random.uniform(0, jitter_local), 300.0)
    return min(backoff_local + random.uniform(0, jitter_local), 300.0)


def _attempt_request_once(method: str, url: str, headers: Dict[str, str], params: Dict[str, Any], json_body: Any, auth, timeout: float):
    try:
        resp = requests.request(method, url, headers=headers or {}, params=params or None, json=json_body, auth=auth, timeout=timeout)
    except requests.RequestException as ex:
        return 'error', {'exception': str(ex)}

    status = getattr(resp, 'status_code', 0)
    resp_headers = dict(getattr(resp, 'headers', None) or {})

    if 200 <= status < 300:
        return 'success', {'body': _parse_body(resp), 'status': status, 'headers': resp_headers}

    ra, rl_remaining, rl_reset = _parse_rate_headers(resp)
    if _should_retry_response(status, ra, rl_remaining):
        return 'retry', {'status': status, 'ra': ra, 'rl_reset': rl_reset, 'body': _parse_body(resp), 'headers': resp_headers}

    return 'fail', {'body': _parse_body(resp), 'status': status, 'headers': resp_headers}


def _request_with_retries_core(
    method: str,
    url: str,
    headers: Dict[str, str],
    params: Dict[str, Any],
    json_body: Any,
    auth,
    timeout: float,
    base: float,
    jitter_val: float,
    max_backoff_resolved: float,
    effective_max_retries: int,
) -> Dict[str, Any]:
    attempt = 0
    backoff = base
    last_result: Dict[str, Any] = {'response': None, 'status': 0, 'headers': {}, 'error': None, 'timestamp': time.time()}

    while attempt < effective_max_retries:
        outcome, data = _attempt_request_once(method, url, headers, params, json_body, auth, timeout)

        if outcome in ('success', 'fail'):
            return {'response': data.get('body'), 'status': data.get('status', 0), 'headers': data.get('headers', {}), 'error': None, 'timestamp': time.time()}

        if outcome == 'error':
            last_result = {'response': None, 'status': 0, 'headers': {}, 'error': data.get('exception'), 'timestamp': time.time()}
            wait_seconds = min(backoff + random.uniform(0, jitter_val), max_backoff_resolved)
        else:
            last_result = {'response': data.get('body'), 'status': data.get('status', 0), 'headers': data.get('headers', {}), 'error': None, 'timestamp': time.time()}
            wait_seconds = _compute_wait_seconds(data.get('ra'), data.get('rl_reset'), backoff, jitter_val)

        attempt += 1
        backoff = min(backoff * 2, max_backoff_resolved)
        if attempt < effective_max_retries:
            time.sleep(wait_seconds)

    return last_result


def perform_request_with_retries(
    method: str,
    url: str,
    headers: Optional[Dict[str, str]] = None,
    params: Optional[Dict[str, Any]] = None,
    json_body: Any = None,
    auth=None,
    timeout: Optional[float] = None,
    max_retries: Optional[int] = None,
    backoff_base: Optional[float] = None,
    backoff_jitter: Optional[float] = None,
    max_backoff: Optional[float] = None,
) -> Dict[str, Any]:
    """Issue one HTTP request, retrying on throttling and network errors.

    Returns a dict with keys ``response`` (decoded body), ``status`` (0 when the network
    failed on every attempt), ``headers``, ``error`` (last network error text) and ``timestamp``.
    """
    base, jitter_val, max_backoff_resolved = _resolve_backoff_params(backoff_base, backoff_jitter, max_backoff)
    if _runtime_max_retries is not None:
        effective_max_retries = int(_runtime_max_retries)
    else:
        effective_max_retries = int(max_retries or DEFAULT_MAX_RETRIES)
    effective_max_retries = max(1, effective_max_retries)
    return _request_with_retries_core(
        method.upper(),
        url,
        headers or {},
        params or {},
        json_body,
        auth,
        timeout if timeout is not None else DEFAULT_TIMEOUT,
        base,
        jitter_val,
        max_backoff_resolved,
        effective_max_retries,
    )


__all__ = ["configure_retry", "reset_retry_configuration", "perform_request_with_retries"]
