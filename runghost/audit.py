# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Audit log of every outbound HTTP call (GitHub REST, package registry).

Layout on disk:
  <dataDir>/audit_logs/audit_<YYYY-MM-DD>.json   (one pretty-printed JSON list per UTC day)

Write path:
- `AuditLogger.record()` only appends to an in-memory buffer (thread-safe).
- The buffer is flushed when it reaches 100 entries, and every 5s by a daemon thread.
- A flush groups entries by UTC day and rewrites each day file atomically (tmp + os.replace).
- On a write failure the unwritten entries go back to the front of the buffer.

Read path:
- `query()` loads day files in [startDate, endDate], filters, sorts newest first, paginates.
- `stats()` aggregates over the same filtered set.

`audited_request()` wraps a `requests` call and emits one record per call.
"""

from __future__ import annotations

import json
import logging
import os
import re
import time
import urllib.parse
import uuid
from collections import OrderedDict
from dataclasses import asdict, dataclass, field
from pathlib import Path
from threading import Event, Lock, Thread
from typing import Any, Dict, List, Mapping, Optional

import requests

from .common import utc_now_iso

logger = logging.getLogger(__name__)

BUFFER_SIZE = 100
FLUSH_INTERVAL_S = 5.0
RATE_LIMIT_WARNING_THRESHOLD = 10
DEFAULT_QUERY_LIMIT = 100
STATS_QUERY_LIMIT = 10000

_LOG_FILE_RE = re.compile(r"^audit_(\d{4}-\d{2}-\d{2})\.json$")


def _new_record_id() -> str:
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


@dataclass
class AuditRecord:
    """One outbound HTTP call. Serialized with camelCase keys."""

    service: str
    method: str
    url: str
    response_time_ms: float
    id: str = field(default_factory=_new_record_id)
    timestamp: str = field(default_factory=utc_now_iso)
    response_status: Optional[int] = None
    response_size_bytes: Optional[int] = None
    error: Optional[str] = None
    identity_id: Optional[str] = None
    rate_limit_remaining: Optional[int] = None
    rate_limit_reset: Optional[str] = None
    user_agent: Optional[str] = None
    cache_hit: Optional[bool] = None
    metadata: Optional[Dict[str, Any]] = None

    _JSON_KEYS = {
        "response_time_ms": "responseTime",
        "response_status": "responseStatus",
        "response_size_bytes": "responseSize",
        "identity_id": "identityId",
        "rate_limit_remaining": "rateLimitRemaining",
        "rate_limit_reset": "rateLimitReset",
        "user_agent": "userAgent",
        "cache_hit": "cacheHit",
    }

    def to_json(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for k, v in asdict(self).items():
            if v is None:
                continue
            out[self._JSON_KEYS.get(k, k)] = v
        return out


@dataclass
class AuditFilter:
    service: Optional[str] = None
    method: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    identity_id: Optional[str] = None
    status: Optional[str] = None  # "success" | "error"
    limit: int = DEFAULT_QUERY_LIMIT
    offset: int = 0


def is_failed_entry(entry: Mapping[str, Any]) -> bool:
    status = entry.get("responseStatus")
    return bool(entry.get("error")) or (isinstance(status, int) and status >= 400)


def is_successful_entry(entry: Mapping[str, Any]) -> bool:
    status = entry.get("responseStatus")
    return not entry.get("error") and isinstance(status, int) and 0 < status < 400


def normalize_endpoint(url: str) -> str:
    """Collapse volatile URL parts so stats group by endpoint.

    "/repos/42/x?y=1" and "/repos/99/x" both become "/repos/:id/x".
    """
    path = str(url or "").split("?", 1)[0]
    path = re.sub(r"/\d+", "/:id", path)
    path = re.sub(r"/[a-f0-9]{40}", "/:hash", path)
    path = re.sub(r"/[a-f0-9]{7,}", "/:hash", path)
    return path


class AuditLogger:
    """Buffered, date-partitioned audit sink."""

    def __init__(
        self,
        data_directory: Path,
        *,
        buffer_size: int = BUFFER_SIZE,
        flush_interval_s: float = FLUSH_INTERVAL_S,
        start_timer: bool = True,
    ):
        self.audit_dir = Path(data_directory) / "audit_logs"
        self.buffer_size = int(buffer_size)
        self.flush_interval_s = float(flush_interval_s)
        self._start_timer = bool(start_timer)
        self._mu = Lock()
        self._io_mu = Lock()
        self._buffer: List[Dict[str, Any]] = []
        self._stop = Event()
        self._thread: Optional[Thread] = None

    # ----------------------------------------------------------------------------------
    # write path
    # ----------------------------------------------------------------------------------

    def record(self, entry: AuditRecord) -> None:
        """Enqueue one record. Never raises into the caller."""
        try:
            payload = entry.to_json()
            with self._mu:
                self._buffer.append(payload)
                full = len(self._buffer) >= self.buffer_size
            self._ensure_timer()
            if full:
                self.flush()
        except Exception as e:  # noqa: BLE001
            logger.warning("Failed to record audit entry: %s", e)

    def pending(self) -> int:
        with self._mu:
            return len(self._buffer)

    def _ensure_timer(self) -> None:
        if not self._start_timer or self._stop.is_set():
            return
        if self._thread is not None and self._thread.is_alive():
            return
        with self._mu:
            if self._thread is not None and self._thread.is_alive():
                return
            self._thread = Thread(target=self._run, name="runghost-audit-flush", daemon=True)
            self._thread.start()

    def _run(self) -> None:
        while not self._stop.wait(self.flush_interval_s):
            self.flush()

    def log_file_for(self, day: str) -> Path:
        return self.audit_dir / f"audit_{day}.json"

    def flush(self) -> int:
        """Write buffered entries to their day files. Returns the number written."""
        with self._mu:
            batch = self._buffer
            self._buffer = []
        if not batch:
            return 0

        by_day: "OrderedDict[str, List[Dict[str, Any]]]" = OrderedDict()
        for e in batch:
            day = str(e.get("timestamp") or utc_now_iso())[:10]
            by_day.setdefault(day, []).append(e)

        written = 0
        remaining = list(by_day.items())
        with self._io_mu:
            while remaining:
                day, entries = remaining[0]
                try:
                    self._append_to_day_file(day, entries)
                except (OSError, TypeError, ValueError) as e:
                    logger.error("Failed to flush %d audit entries for %s: %s", len(entries), day, e)
                    unwritten = [x for (_, es) in remaining for x in es]
                    with self._mu:
                        self._buffer[:0] = unwritten
                    break
                written += len(entries)
                remaining.pop(0)
        return written

    def _append_to_day_file(self, day: str, entries: List[Dict[str, Any]]) -> None:
        self.audit_dir.mkdir(parents=True, exist_ok=True)
        path = self.log_file_for(day)
        existing: List[Dict[str, Any]] = []
        if path.exists():
            text = path.read_text()
            if text.strip():
                try:
                    loaded = json.loads(text)
                except json.JSONDecodeError:
                    logger.warning("Audit file %s is not valid JSON; starting fresh", path)
                    loaded = []
                existing = loaded if isinstance(loaded, list) else []
        existing.extend(entries)
        tmp = f"{path}.tmp.{os.getpid()}"
        Path(tmp).write_text(json.dumps(existing, indent=2))
        os.replace(tmp, str(path))

    def close(self) -> None:
        """Stop the flush thread and write whatever is buffered."""
        self._stop.set()
        t = self._thread
        if t is not None and t.is_alive():
            t.join(timeout=self.flush_interval_s + 1.0)
        self.flush()

    # ----------------------------------------------------------------------------------
    # read path
    # ----------------------------------------------------------------------------------

    def _log_files(self, start_date: Optional[str], end_date: Optional[str]) -> List[Path]:
        try:
            names = sorted(os.listdir(self.audit_dir))
        except FileNotFoundError:
            return []
        except OSError as e:
            logger.error("Failed to list audit logs in %s: %s", self.audit_dir, e)
            return []
        out: List[Path] = []
        for name in names:
            m = _LOG_FILE_RE.match(name)
            if not m:
                continue
            day = m.group(1)
            if start_date and day < start_date[:10]:
                continue
            if end_date and day > end_date[:10]:
                continue
            out.append(self.audit_dir / name)
        return out

    def _load_filtered(self, flt: AuditFilter) -> List[Dict[str, Any]]:
        entries: List[Dict[str, Any]] = []
        for path in self._log_files(flt.start_date, flt.end_date):
            try:
                data = json.loads(path.read_text() or "[]")
            except (OSError, json.JSONDecodeError) as e:
                logger.error("Failed to read audit file %s: %s", path, e)
                continue
            if isinstance(data, list):
                entries.extend(e for e in data if isinstance(e, dict))

        def keep(e: Dict[str, Any]) -> bool:
            if flt.service and e.get("service") != flt.service:
                return False
            if flt.method and e.get("method") != flt.method:
                return False
            if flt.identity_id and e.get("identityId") != flt.identity_id:
                return False
            if flt.status == "success" and not is_successful_entry(e):
                return False
            if flt.status == "error" and not is_failed_entry(e):
                return False
            ts = str(e.get("timestamp") or "")
            if flt.start_date and ts < flt.start_date:
                return False
            if flt.end_date and ts > flt.end_date:
                return False
            return True

        out = [e for e in entries if keep(e)]
        out.sort(key=lambda e: str(e.get("timestamp") or ""), reverse=True)
        return out

    def query(self, flt: Optional[AuditFilter] = None) -> List[Dict[str, Any]]:
        flt = flt or AuditFilter()
        offset = max(0, int(flt.offset or 0))
        limit = int(flt.limit or DEFAULT_QUERY_LIMIT)
        return self._load_filtered(flt)[offset : offset + limit]

    def stats(self, flt: Optional[AuditFilter] = None) -> Dict[str, Any]:
        base = flt or AuditFilter()
        logs = self.query(
            AuditFilter(
                service=base.service,
                method=base.method,
                start_date=base.start_date,
                end_date=base.end_date,
                identity_id=base.identity_id,
                status=base.status,
                limit=STATS_QUERY_LIMIT,
                offset=0,
            )
        )
        stats: Dict[str, Any] = {
            "totalRequests": len(logs),
            "successfulRequests": 0,
            "failedRequests": 0,
            "averageResponseTime": 0,
            "totalResponseSize": 0,
            "requestsByService": {},
            "requestsByMethod": {},
            "requestsByHour": {},
            "requestsByDay": {},
            "rateLimitHits": 0,
            "cacheHitRate": 0,
            "topEndpoints": [],
        }
        if not logs:
            return stats

        total_time = 0.0
        cache_hits = 0
        endpoints: Dict[str, List[float]] = {}
        for e in logs:
            if is_failed_entry(e):
                stats["failedRequests"] += 1
            else:
                stats["successfulRequests"] += 1
            rt = float(e.get("responseTime") or 0)
            total_time += rt
            stats["totalResponseSize"] += int(e.get("responseSize") or 0)

            for key, bucket in (
                ("requestsByService", str(e.get("service") or "")),
                ("requestsByMethod", str(e.get("method") or "")),
                ("requestsByHour", str(e.get("timestamp") or "")[:13]),
                ("requestsByDay", str(e.get("timestamp") or "")[:10]),
            ):
                stats[key][bucket] = stats[key].get(bucket, 0) + 1

            remaining = e.get("rateLimitRemaining")
            if isinstance(remaining, int) and remaining <= RATE_LIMIT_WARNING_THRESHOLD:
                stats["rateLimitHits"] += 1
            if e.get("cacheHit"):
                cache_hits += 1

            ep = endpoints.setdefault(normalize_endpoint(str(e.get("url") or "")), [0, 0.0])
            ep[0] += 1
            ep[1] += rt

        stats["averageResponseTime"] = total_time / len(logs)
        stats["cacheHitRate"] = cache_hits / len(logs)
        top = sorted(endpoints.items(), key=lambda kv: kv[1][0], reverse=True)[:10]
        stats["topEndpoints"] = [
            {"url": url, "count": int(c), "averageResponseTime": t / c} for (url, (c, t)) in top
        ]
        return stats


# ======================================================================================
# HTTP wrapper
# ======================================================================================


def _header(headers: Optional[Mapping[str, Any]], name: str) -> Optional[str]:
    if not headers:
        return None
    for k, v in headers.items():
        if str(k).lower() == name.lower():
            return None if v is None else str(v)
    return None


def _to_int(value: Optional[str]) -> Optional[int]:
    try:
        return int(str(value).strip()) if value is not None else None
    except (TypeError, ValueError):
        return None


def audited_request(
    audit: Optional[AuditLogger],
    method: str,
    url: str,
    *,
    service: str,
    identity_id: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    session: Optional[requests.Session] = None,
    headers: Optional[Dict[str, str]] = None,
    params: Optional[Dict[str, Any]] = None,
    json_body: Any = None,
    timeout: float = 30,
) -> requests.Response:
    """requests.request wrapper that emits one AuditRecord per call.

    Request headers are never recorded (they carry the Authorization token); only the
    User-Agent value is kept. Transport errors are recorded with `error` set and re-raised.
    """
    method = str(method or "GET").upper()
    url_full = str(url or "")
    if params:
        q = urllib.parse.urlencode(params, doseq=True)
        if q:
            url_full = f"{url_full}{'&' if '?' in url_full else '?'}{q}"
    user_agent = _header(headers, "User-Agent")
    sender = session if session is not None else requests

    t0 = time.monotonic()
    try:
        resp = sender.request(method, url, headers=headers, params=params, json=json_body, timeout=timeout)
    except requests.RequestException as e:
        if audit is not None:
            audit.record(
                AuditRecord(
                    service=service,
                    method=method,
                    url=url_full,
                    response_time_ms=round((time.monotonic() - t0) * 1000.0, 3),
                    error=str(e) or e.__class__.__name__,
                    identity_id=identity_id,
                    user_agent=user_agent,
                    metadata=metadata,
                )
            )
        raise

    if audit is not None:
        code = int(resp.status_code or 0)
        audit.record(
            AuditRecord(
                service=service,
                method=method,
                url=url_full,
                response_time_ms=round((time.monotonic() - t0) * 1000.0, 3),
                response_status=code,
                response_size_bytes=_to_int(_header(resp.headers, "Content-Length")) or 0,
                identity_id=identity_id,
                rate_limit_remaining=_to_int(_header(resp.headers, "X-RateLimit-Remaining")),
                rate_limit_reset=_header(resp.headers, "X-RateLimit-Reset"),
                user_agent=user_agent,
                cache_hit=True if code == 304 else None,
                metadata=metadata,
            )
        )
    return resp
