"""PTB environment bootstrap.

Sets environment flags before python-telegram-bot is imported anywhere else.
Import this module first in any entrypoint that needs PTB.
"""

from __future__ import annotations

import os

# Opt-in to timedelta for RetryAfter.retry_after to avoid deprecation warnings
os.environ.setdefault("PTB_TIMEDELTA", "1")
