"""Remote API client and async bridging helpers."""

from .async_utils import run_sync
from .client import ProgressApiClient

__all__ = ["ProgressApiClient", "run_sync"]
