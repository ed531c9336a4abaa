"""Administrator privilege check."""
from __future__ import annotations

import ctypes
import os


def is_admin() -> bool:
    try:
        return bool(ctypes.windll.shell32.IsUserAnAdmin())  # type: ignore[attr-defined]
    except AttributeError:
        geteuid = getattr(os, "geteuid", None)
        return bool(geteuid is not None and geteuid() == 0)
