# engine_config.py
"""Runtime settings for the plan execution engine.

Every delay and threshold the controller, interpreter and resolver use lives
here so a host (or a test) can tighten them without touching engine code.
Values come from the process environment, optionally seeded from a ``.env``
file in the working directory.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace as _replace
from typing import Dict, Mapping, Optional

from dotenv import dotenv_values, find_dotenv

ENV_PREFIX = "AUTOFILL_"
TRUE_VALUES = {"1", "true", "yes", "on"}
FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class EngineConfig:
    confidence_threshold: float = 0.7
    settle_ms: int = 500
    click_settle_ms: int = 300
    resolve_rounds: int = 5
    resolve_interval_ms: int = 500
    wait_timeout_ms: int = 5000
    wait_poll_ms: int = 100
    default_sleep_ms: int = 1000
    notice_ms: int = 3000
    # None keeps the wait unbounded
    navigate_timeout_ms: Optional[int] = None
    intervention_timeout_ms: Optional[int] = None
    headless: bool = False
    profile_dir: str = "profiles/chromium_user_data"
    capture_dir: str = "run_captures"

    def replace(self, **overrides) -> "EngineConfig":
        return _replace(self, **overrides)


def _env_bool(raw: Optional[str], default: bool, name: str) -> bool:
    if raw is None:
        return default
    normalized = raw.strip().lower()
    if normalized in TRUE_VALUES:
        return True
    if normalized in FALSE_VALUES:
        return False
    print(f"  • Unrecognized {name} value '{raw}', keeping {default}.")
    return default


def _env_int(raw: Optional[str], default: Optional[int], name: str) -> Optional[int]:
    if raw is None or not raw.strip():
        return default
    try:
        value = int(float(raw))
    except ValueError:
        print(f"  • Unrecognized {name} value '{raw}', keeping {default}.")
        return default
    return max(0, value)


def _env_float(raw: Optional[str], default: float, name: str) -> float:
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        print(f"  • Unrecognized {name} value '{raw}', keeping {default}.")
        return default


def load_config(env: Optional[Mapping[str, str]] = None, dotenv: bool = True) -> EngineConfig:
    """Build an :class:`EngineConfig` from ``AUTOFILL_*`` variables.

    ``env`` defaults to ``os.environ``. When ``dotenv`` is true, a ``.env``
    file in the working directory supplies values the environment does not
    already define.
    """
    merged: Dict[str, str] = {}
    if dotenv:
        merged.update({k: v for k, v in dotenv_values(find_dotenv(usecwd=True)).items() if v is not None})
    merged.update(os.environ if env is None else env)

    def get(key: str) -> Optional[str]:
        return merged.get(ENV_PREFIX + key)

    defaults = EngineConfig()
    threshold = _env_float(get("CONFIDENCE_THRESHOLD"), defaults.confidence_threshold, "AUTOFILL_CONFIDENCE_THRESHOLD")

    return EngineConfig(
        confidence_threshold=max(0.0, min(1.0, threshold)),
        settle_ms=_env_int(get("SETTLE_MS"), defaults.settle_ms, "AUTOFILL_SETTLE_MS"),
        click_settle_ms=_env_int(get("CLICK_SETTLE_MS"), defaults.click_settle_ms, "AUTOFILL_CLICK_SETTLE_MS"),
        resolve_rounds=max(1, _env_int(get("RESOLVE_ROUNDS"), defaults.resolve_rounds, "AUTOFILL_RESOLVE_ROUNDS")),
        resolve_interval_ms=_env_int(
            get("RESOLVE_INTERVAL_MS"), defaults.resolve_interval_ms, "AUTOFILL_RESOLVE_INTERVAL_MS"
        ),
        wait_timeout_ms=_env_int(get("WAIT_TIMEOUT_MS"), defaults.wait_timeout_ms, "AUTOFILL_WAIT_TIMEOUT_MS"),
        wait_poll_ms=_env_int(get("WAIT_POLL_MS"), defaults.wait_poll_ms, "AUTOFILL_WAIT_POLL_MS"),
        default_sleep_ms=_env_int(get("DEFAULT_SLEEP_MS"), defaults.default_sleep_ms, "AUTOFILL_DEFAULT_SLEEP_MS"),
        notice_ms=_env_int(get("NOTICE_MS"), defaults.notice_ms, "AUTOFILL_NOTICE_MS"),
        navigate_timeout_ms=_env_int(get("NAVIGATE_TIMEOUT_MS"), None, "AUTOFILL_NAVIGATE_TIMEOUT_MS"),
        intervention_timeout_ms=_env_int(
            get("INTERVENTION_TIMEOUT_MS"), None, "AUTOFILL_INTERVENTION_TIMEOUT_MS"
        ),
        headless=_env_bool(get("HEADLESS"), defaults.headless, "AUTOFILL_HEADLESS"),
        profile_dir=(get("PROFILE_DIR") or "").strip() or defaults.profile_dir,
        capture_dir=(get("CAPTURE_DIR") or "").strip() or defaults.capture_dir,
    )
