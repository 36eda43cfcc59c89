"""Construction of the environment passed to Logstash."""

from __future__ import annotations


def get_limited_environment(original_vars, kept_vars) -> list[str]:
    """Keep only the listed variables from ``KEY=value`` strings.

    TZ is set to UTC unless TZ itself is among the kept variables, so that
    timestamps don't depend on the local timezone.
    """
    kept = set(kept_vars)
    result = [item for item in original_vars if item.split("=", 1)[0] in kept]
    if "TZ" not in kept:
        result.append("TZ=UTC")
    return result