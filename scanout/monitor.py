"""Periodic progress reporting for a running scan.

A :class:`Monitor` is fed a snapshot of the scan counters about once a
second. It works out rates, averages and an estimate of the time left.
It prints a one-line summary and can append a row to a CSV status file.
It raises :class:`MonitorAbort` when the scan should be stopped.
"""

from __future__ import annotations

import logging
import math
import sys
from dataclasses import dataclass, replace
from datetime import datetime
from typing import IO, Optional, Union

_log = logging.getLogger(__name__)

UPDATE_INTERVAL = 1  # seconds
WARMUP_PERIOD = 5  # seconds
MIN_HITRATE_TIME_WINDOW = 5  # seconds

_U32_MAX = 0xFFFFFFFF

STATUS_FILE_HEADER = (
    "real-time,time-elapsed,time-remaining,"
    "percent-complete,hit-rate,active-send-threads,"
    "sent-total,sent-last-one-sec,sent-avg-per-sec,"
    "recv-success-total,recv-success-last-one-sec,recv-success-avg-per-sec,"
    "recv-total,recv-total-last-one-sec,recv-total-avg-per-sec,"
    "pcap-drop-total,drop-last-one-sec,drop-avg-per-sec,"
    "sendto-fail-total,sendto-fail-last-one-sec,sendto-fail-avg-per-sec"
)


class MonitorAbort(Exception):
    """Raised when a scan limit has been crossed and the scan must stop."""


@dataclass
class MonitorConfig:
    """Settings of the scan that the monitor needs."""

    total_shards: int = 1
    cooldown_secs: float = 0
    max_runtime: float = 0
    max_results: int = 0
    min_hitrate: float = 0.0
    max_sendto_failures: int = -1
    quiet: bool = False
    app_success: bool = False
    status_updates_file: Optional[str] = None


@dataclass
class ScanCounters:
    """Snapshot of the sender and receiver counters."""

    start: float
    finish: float = 0.0
    complete: bool = False
    recv_complete: bool = False
    max_targets: int = 0
    max_index: int = 0
    sent: int = 0
    tried_sent: int = 0
    failures: int = 0
    send_threads: int = 0
    pcap_recv: int = 0
    success_unique: int = 0
    app_success_unique: int = 0
    filter_success: int = 0
    pcap_drop: int = 0
    pcap_ifdrop: int = 0


@dataclass
class ExportStatus:
    """Figures worked out by one monitor update."""

    total_sent: int = 0
    total_tried_sent: int = 0
    recv_success_unique: int = 0
    app_recv_success_unique: int = 0
    total_recv: int = 0
    complete: bool = False
    send_threads: int = 0
    percent_complete: float = 0.0
    hitrate: float = 0.0
    app_hitrate: float = 0.0
    send_rate: float = 0.0
    send_rate_str: str = ""
    send_rate_avg: float = 0.0
    send_rate_avg_str: str = ""
    recv_rate: float = 0.0
    recv_rate_str: str = ""
    recv_avg: float = 0.0
    recv_avg_str: str = ""
    recv_total_rate: float = 0.0
    recv_total_avg: float = 0.0
    app_success_rate: float = 0.0
    app_success_rate_str: str = ""
    app_success_avg: float = 0.0
    app_success_avg_str: str = ""
    pcap_drop: int = 0
    pcap_ifdrop: int = 0
    pcap_drop_total: int = 0
    pcap_drop_total_str: str = ""
    pcap_drop_last: float = 0.0
    pcap_drop_last_str: str = ""
    pcap_drop_avg: float = 0.0
    pcap_drop_avg_str: str = ""
    time_remaining: int = 0
    time_remaining_str: str = ""
    time_past: int = 0
    time_past_str: str = ""
    fail_total: int = 0
    fail_avg: float = 0.0
    fail_last: float = 0.0
    seconds_under_min_hitrate: float = 0.0


def _div(numerator: float, denominator: float) -> float:
    """Floating-point division that yields inf or nan instead of raising."""
    if denominator == 0:
        if numerator == 0 or math.isnan(numerator):
            return math.nan
        return math.copysign(math.inf, numerator)
    return numerator / denominator


def _to_u32(value: float) -> int:
    if math.isnan(value) or value <= 0:
        return 0
    if value >= _U32_MAX:
        return _U32_MAX
    return int(value)


def _number_string(value: float) -> str:
    if not math.isfinite(value):
        return str(value)
    for suffix, scale in ((" G", 1e9), (" M", 1e6), (" K", 1e3)):
        if abs(value) >= scale:
            return f"{value / scale:.2f}{suffix}"
    return f"{value:.2f} "


def _time_string(seconds: float) -> str:
    if not math.isfinite(seconds):
        return "?"
    sign = "-" if seconds < 0 else ""
    total = int(abs(seconds))
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{sign}{hours}:{minutes:02d}:{secs:02d}"
    return f"{sign}{minutes}:{secs:02d}"


def compute_remaining_time(
    age: float, tried_sent: int, config: MonitorConfig, counters: ScanCounters
) -> float:
    """Estimate the seconds left in the scan; inf when no limit applies."""
    if counters.complete:
        now = counters.start + age
        return config.cooldown_secs - (now - counters.finish)
    remaining = [math.inf] * 4
    if counters.max_targets:
        done = _div(tried_sent, counters.max_targets // config.total_shards)
        remaining[0] = (1.0 - done) * _div(age, done) + config.cooldown_secs
    if config.max_runtime:
        remaining[1] = (config.max_runtime - age) + config.cooldown_secs
    if config.max_results:
        done = _div(counters.filter_success, config.max_results)
        remaining[2] = (1.0 - done) * _div(age, done)
    if counters.max_index:
        done = _div(tried_sent, counters.max_index // config.total_shards)
        remaining[3] = (1.0 - done) * _div(age, done) + config.cooldown_secs
    best = math.inf
    for estimate in remaining:
        if estimate < best:
            best = estimate
    return best


def check_min_hitrate(status: ExportStatus, config: MonitorConfig) -> None:
    """Raise MonitorAbort once the hit rate has stayed too low for too long."""
    if status.seconds_under_min_hitrate >= MIN_HITRATE_TIME_WINDOW:
        raise MonitorAbort(
            f"hitrate below {config.min_hitrate:.0f} for "
            f"{status.seconds_under_min_hitrate:.0f} seconds. aborting scan."
        )


def check_max_sendto_failures(status: ExportStatus, config: MonitorConfig) -> None:
    """Raise MonitorAbort when more sends have failed than allowed."""
    if config.max_sendto_failures >= 0 and status.fail_total > config.max_sendto_failures:
        raise MonitorAbort(
            f"maximum number of sendto failures ({config.max_sendto_failures}) exceeded"
        )


def drop_warnings(status: ExportStatus) -> list[str]:
    """Return warnings about dropped packets and failed sends."""
    warnings = []
    if _div(status.pcap_drop_last, status.recv_rate) > 0.05:
        warnings.append(
            f"Dropped {status.pcap_drop_last:.0f} packets in the last second, "
            f"({status.pcap_drop_total} total dropped "
            f"(pcap: {status.pcap_drop} + iface: {status.pcap_ifdrop}))"
        )
    if _div(status.fail_last, status.send_rate) > 0.01:
        warnings.append(
            f"Failed to send {status.fail_last:.0f} packets/sec "
            f"({status.fail_total} total failures)"
        )
    return warnings


def format_status_row(status: ExportStatus, timestamp: Union[datetime, str]) -> str:
    """Render one row of the CSV status file, without the newline."""
    if isinstance(timestamp, datetime):
        stamp = timestamp.strftime("%Y-%m-%d %H:%M:%S")
    else:
        stamp = str(timestamp)
    columns = [
        stamp,
        str(status.time_past),
        str(status.time_remaining),
        f"{status.percent_complete:f}",
        f"{status.hitrate:f}",
        str(status.send_threads),
        str(status.total_sent),
        f"{status.send_rate:.0f}",
        f"{status.send_rate_avg:.0f}",
        str(status.recv_success_unique),
        f"{status.recv_rate:.0f}",
        f"{status.recv_avg:.0f}",
        str(status.total_recv),
        f"{status.recv_total_rate:.0f}",
        f"{status.recv_total_avg:.0f}",
        str(status.pcap_drop_total),
        f"{status.pcap_drop_last:.0f}",
        f"{status.pcap_drop_avg:.0f}",
        str(status.fail_total),
        f"{status.fail_last:.0f}",
        f"{status.fail_avg:.0f}",
    ]
    return ",".join(columns)


def _onscreen_line(status: ExportStatus, app_success: bool) -> str:
    head = f"{status.time_past_str:>5} {status.percent_complete:.0f}%{status.time_remaining_str}; "
    verb = "sent" if app_success else "send"
    if status.complete:
        send = f"{verb}: {status.total_sent} done ({status.send_rate_avg_str}p/s avg); "
    else:
        send = (
            f"{verb}: {status.total_sent} {status.send_rate_str}p/s "
            f"({status.send_rate_avg_str}p/s avg); "
        )
    recv = (
        f"recv: {status.recv_success_unique} {status.recv_rate_str}p/s "
        f"({status.recv_avg_str}p/s avg); "
    )
    app = ""
    if app_success:
        app = (
            f"app success: {status.app_recv_success_unique} "
            f"{status.app_success_rate_str}p/s ({status.app_success_avg_str}p/s avg); "
        )
    drops = f"drops: {status.pcap_drop_last_str}p/s ({status.pcap_drop_avg_str}p/s avg); "
    tail = f"hitrate: {status.hitrate:.2f}%"
    if app_success:
        tail += f" app hitrate: {status.app_hitrate:.2f}%"
    return head + send + recv + app + drops + tail


class Monitor:
    """Turns successive counter snapshots into progress reports."""

    def __init__(self, config: MonitorConfig, stream: Optional[IO[str]] = None) -> None:
        self.config = config
        self.stream = sys.stderr if stream is None else stream
        self.status_file: Optional[IO[str]] = None
        self._last_now: Optional[float] = None
        self._last_sent = 0
        self._last_send_failures = 0
        self._last_recv_net_success = 0
        self._last_recv_app_success = 0
        self._last_recv_total = 0
        self._last_pcap_drop = 0
        self._min_hitrate_start = 0.0
        self._previous: Optional[ExportStatus] = None
        if config.status_updates_file:
            path = config.status_updates_file
            try:
                self.status_file = open(path, "w", encoding="utf-8")
            except OSError as exc:
                raise OSError(
                    exc.errno,
                    f"could not open status updates file ({path}): {exc.strerror}",
                ) from exc
            _log.debug("status updates CSV will be saved to %s", path)
            self.status_file.write(STATUS_FILE_HEADER + "\n")
            self.status_file.flush()

    def _export(self, counters: ScanCounters, now: float) -> ExportStatus:
        config = self.config
        status = ExportStatus() if self._previous is None else replace(self._previous)
        total_sent = counters.sent
        total_recv = counters.pcap_recv
        recv_success = counters.success_unique
        app_success = counters.app_success_unique
        age = now - counters.start
        last_now = counters.start if self._last_now is None else self._last_now
        delta = now - last_now
        remaining = compute_remaining_time(age, counters.tried_sent, config, counters)

        if age < WARMUP_PERIOD:
            status.time_remaining_str = ""
        else:
            left = math.ceil(remaining) if math.isfinite(remaining) else remaining
            status.time_remaining_str = f" ({_time_string(left)} left)"
        status.time_past = _to_u32(age)
        status.time_remaining = _to_u32(remaining)
        status.time_past_str = _time_string(int(age))

        status.recv_rate = _div(recv_success - self._last_recv_net_success, delta)
        status.recv_rate_str = _number_string(status.recv_rate)
        status.recv_avg = _div(recv_success, age)
        status.recv_avg_str = _number_string(status.recv_avg)
        status.recv_total_rate = _div(total_recv - self._last_recv_total, delta)
        status.recv_total_avg = _div(total_recv, age)

        if config.app_success:
            status.app_success_rate = _div(app_success - self._last_recv_app_success, delta)
            status.app_success_rate_str = _number_string(status.app_success_rate)
            status.app_success_avg = _div(app_success, age)
            status.app_success_avg_str = _number_string(status.app_success_avg)

        if total_sent:
            status.hitrate = recv_success * 100.0 / total_sent
            status.app_hitrate = app_success * 100.0 / total_sent
        else:
            status.hitrate = 0.0
            status.app_hitrate = 0.0

        if age > WARMUP_PERIOD and status.hitrate < config.min_hitrate:
            if abs(self._min_hitrate_start) < 0.00001:
                self._min_hitrate_start = now
        else:
            self._min_hitrate_start = 0.0
        if abs(self._min_hitrate_start) < 0.00001:
            status.seconds_under_min_hitrate = 0.0
        else:
            status.seconds_under_min_hitrate = now - self._min_hitrate_start

        if not counters.complete:
            status.send_rate = _div(total_sent - self._last_sent, delta)
            status.send_rate_str = _number_string(status.send_rate)
            status.send_rate_avg = _div(total_sent, age)
        else:
            status.send_rate_avg = _div(total_sent, counters.finish - counters.start)
        status.send_rate_avg_str = _number_string(status.send_rate_avg)

        status.total_sent = total_sent
        status.total_tried_sent = counters.tried_sent
        status.percent_complete = _div(100.0 * age, age + remaining)
        status.recv_success_unique = recv_success
        status.app_recv_success_unique = app_success
        status.total_recv = total_recv
        status.complete = counters.complete

        status.pcap_drop = counters.pcap_drop
        status.pcap_ifdrop = counters.pcap_ifdrop
        status.pcap_drop_total = counters.pcap_drop + counters.pcap_ifdrop
        status.pcap_drop_last = _div(status.pcap_drop_total - self._last_pcap_drop, delta)
        status.pcap_drop_avg = _div(status.pcap_drop_total, age)
        status.pcap_drop_total_str = _number_string(status.pcap_drop_total)
        status.pcap_drop_last_str = _number_string(status.pcap_drop_last)
        status.pcap_drop_avg_str = _number_string(status.pcap_drop_avg)

        status.fail_total = counters.failures
        status.fail_last = _div(status.fail_total - self._last_send_failures, delta)
        status.fail_avg = _div(status.fail_total, age)

        status.send_threads = counters.send_threads

        self._last_now = now
        self._last_sent = status.total_sent
        self._last_recv_net_success = status.recv_success_unique
        self._last_recv_app_success = status.app_recv_success_unique
        self._last_pcap_drop = status.pcap_drop_total
        self._last_send_failures = status.fail_total
        self._last_recv_total = status.total_recv
        self._previous = status
        return status

    def update(self, counters: ScanCounters, now: float) -> ExportStatus:
        """Process one snapshot taken at time ``now`` and report on it.

        Raises MonitorAbort when the hit rate or send failures cross
        their configured limits.
        """
        status = self._export(counters, now)
        for warning in drop_warnings(status):
            _log.warning(warning)
        check_min_hitrate(status, self.config)
        check_max_sendto_failures(status, self.config)
        if not self.config.quiet:
            self.stream.write(_onscreen_line(status, self.config.app_success) + "\n")
            self.stream.flush()
        if self.status_file is not None:
            row = format_status_row(status, datetime.fromtimestamp(now))
            self.status_file.write(row + "\n")
            self.status_file.flush()
        return status

    def close(self) -> None:
        """Flush the screen stream and close the status file."""
        if not self.config.quiet:
            self.stream.flush()
        if self.status_file is not None:
            self.status_file.flush()
            self.status_file.close()
            self.status_file = None

    def __enter__(self) -> "Monitor":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()