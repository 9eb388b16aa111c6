# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""runghost: multi-identity GitHub dashboard backend.

Fetches and caches GitHub, package-registry and local-workspace data, and records every
outbound HTTP call to a date-partitioned audit log.
"""

__version__ = "1.0.0"
