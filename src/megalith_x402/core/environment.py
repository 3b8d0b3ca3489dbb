"""
Utilities for assembling the settings mapping used by the x402 helpers.

Settings come from the process environment, optionally replaced by a caller
supplied ``base`` mapping, with explicit ``overrides`` layered on top. The
result is a plain mapping that :mod:`megalith_x402.core.config` turns into
typed configuration objects.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

__all__ = ["SettingsEnvironment", "build_environment"]


@dataclass(frozen=True)
class SettingsEnvironment:
    """
    A resolved set of ``X402_*`` and ``RPC_*`` settings.
    """

    variables: Mapping[str, str]

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        value = self.variables.get(key)
        if value is None or not value.strip():
            return default
        return value.strip()


def build_environment(
    *,
    base: Optional[Mapping[str, str]] = None,
    overrides: Optional[Mapping[str, str]] = None,
) -> SettingsEnvironment:
    """
    Assemble a :class:`SettingsEnvironment`.

    ``base`` defaults to :data:`os.environ`. ``overrides`` always win.
    """
    merged: Dict[str, str] = dict(os.environ if base is None else base)

    if overrides:
        merged.update(overrides)

    return SettingsEnvironment(variables=merged)
