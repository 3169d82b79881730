"""Data models for storage layer."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class LimitModelStatus:
    """Accumulated usage of one model, read back from the two ledger hashes."""

    total_token_sum: int = 0
    request_count: int = 0
