# adlotto/core/config.py
"""Build deployment `Rules` from an optional JSON file and ADLOTTO_* environment overrides."""
from __future__ import annotations
from dataclasses import fields
from typing import Any, Dict, Mapping, Optional
import json
import logging
import os

from .state import SELECTIONS, Rules

logger = logging.getLogger(__name__)

ENV_PREFIX = "ADLOTTO_"


def _load_json(path: str) -> dict:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            payload = json.load(handle)
    except FileNotFoundError:
        logger.warning("rules file %s not found, using defaults", path)
        return {}
    if not isinstance(payload, dict):
        raise ValueError(f"{path}: expected a JSON object")
    return payload


def _coerce(name: str, kind: Any, raw: Any) -> Any:
    if kind in (int, "int"):
        if isinstance(raw, bool):
            raise ValueError(f"{name}: expected an integer")
        try:
            return int(str(raw).strip().replace("_", ""))
        except ValueError:
            raise ValueError(f"{name}: expected an integer, got {raw!r}") from None
    return str(raw).strip()


def validate(rules: Rules) -> Rules:
    for f in fields(rules):
        v = getattr(rules, f.name)
        if isinstance(v, int) and v < 0:
            raise ValueError(f"{f.name} must be non-negative")
    if rules.epoch_ms <= 0:
        raise ValueError("epoch_ms must be positive")
    if rules.min_stake > rules.max_stake:
        raise ValueError("min_stake exceeds max_stake")
    if rules.winner_selection not in SELECTIONS:
        raise ValueError(f"winner_selection must be one of {SELECTIONS}")
    return rules


def load_rules(path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None,
               **overrides: Any) -> Rules:
    env = os.environ if environ is None else environ
    values: Dict[str, Any] = {}
    known = {f.name: f.type for f in fields(Rules)}

    if path:
        for key, raw in _load_json(path).items():
            if key not in known:
                raise ValueError(f"{path}: unknown rule {key!r}")
            values[key] = _coerce(key, known[key], raw)

    for key, kind in known.items():
        raw = env.get(ENV_PREFIX + key.upper())
        if raw is not None and str(raw).strip():
            values[key] = _coerce(key, kind, raw)

    for key, raw in overrides.items():
        if key not in known:
            raise ValueError(f"unknown rule {key!r}")
        if raw is not None:
            values[key] = _coerce(key, known[key], raw)

    return validate(Rules(**values))
