from __future__ import annotations

import os
from dataclasses import dataclass


INTEGRATION_MODES = ("disabled", "sandbox", "live")


@dataclass
class IntegrationResult:
    ok: bool
    code: str = ""
    message: str = ""
    raw: dict | None = None


class IntegrationDisabledError(RuntimeError):
    pass


class IntegrationMisconfiguredError(RuntimeError):
    pass


def integration_mode() -> str:
    mode = (os.getenv("INTEGRATIONS_MODE") or "").strip().lower()
    return mode if mode in INTEGRATION_MODES else "disabled"
