# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""runghost error types.

Kept in their own module so the store, the upstream clients and the HTTP layer
can catch specific classes without import cycles.
"""

from __future__ import annotations

from typing import Optional


class RunGhostError(Exception):
    pass


class ConfigError(RunGhostError):
    pass


class StoreError(RunGhostError):
    pass


class QueryValidationError(RunGhostError):
    """Rejected diagnostic input (non-SELECT SQL, bad table name, unknown table)."""

    def __init__(self, message: str, *, status_code: int = 400):
        super().__init__(message)
        self.status_code = int(status_code)


class UpstreamError(RunGhostError):
    def __init__(
        self,
        *,
        status_code: int,
        url: str,
        message: str,
        rate_limit_remaining: Optional[int] = None,
        rate_limit_reset: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = int(status_code)
        self.url = str(url or "")
        self.rate_limit_remaining = rate_limit_remaining
        self.rate_limit_reset = rate_limit_reset


class UpstreamNotFoundError(UpstreamError):
    pass


class RateLimitError(UpstreamError):
    pass
