# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""Small helpers shared across runghost modules."""

from __future__ import annotations

from datetime import datetime, timezone


def iso_from_datetime(dt: datetime) -> str:
    """UTC ISO-8601 with millisecond precision and a `Z` suffix."""
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def utc_now_iso() -> str:
    return iso_from_datetime(datetime.now(timezone.utc))


def iso_from_epoch_ms(ms: int) -> str:
    return iso_from_datetime(datetime.fromtimestamp(ms / 1000.0, tz=timezone.utc))
