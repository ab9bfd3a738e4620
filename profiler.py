#!/usr/bin/env python3
"""Measure gnokey response times under a steady, rate-limited load."""

from __future__ import annotations

import argparse
import logging
import os
import signal
import sys
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable

import yaml

from execution_log import DEFAULT_CSV_FILE, ExecutionLog, ExecutionSample, summarize_samples
from task_executor import CommandResult, execute_command
from task_generator import Mode, TaskGenerator, TaskSettings, generate_command
from worker_pool import PoolConfig, RateLimitedWorkerPool


DEFAULT_CONFIG_PATH = "profiler_config.yaml"
DEFAULT_LOG_LEVEL = "INFO"
SHUTDOWN_GRACE_S = 2.0
WAIT_TICK_S = 0.2

DEFAULTS: dict[str, Any] = {
    "max_threads": 1,
    "max_qps": 1,
    "mode": Mode.CALL.value,
    "package": "",
    "function": "",
    "remote": "localhost:26657",
    "keyname": "Dev",
    "pkgdir": ".",
    "chainid": "dev",
    "output": DEFAULT_CSV_FILE,
    "duration": 0.0,
    "flush_interval": 0.0,
}

logger = logging.getLogger("profiler")

Executor = Callable[[str, str], CommandResult]


@dataclass(frozen=True)
class ProfilerSettings:
    pool: PoolConfig
    mode: Mode
    task: TaskSettings
    output: str
    duration_s: float
    flush_interval_s: float
    profile_name: str = ""


def setup_logger(level: str = DEFAULT_LOG_LEVEL, log_file: str | None = None) -> logging.Logger:
    root = logging.getLogger()
    root.setLevel(level.upper())
    root.handlers = []

    formatter = logging.Formatter(
        "%(asctime)s.%(msecs)03d %(levelname)s %(name)s %(message)s",
        "%Y-%m-%dT%H:%M:%S",
    )
    stream = logging.StreamHandler(sys.stdout)
    stream.setFormatter(formatter)
    root.addHandler(stream)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
    return logger


def load_local_env(path: str = ".env") -> None:
    env_path = Path(path)
    if not env_path.exists():
        return
    for raw_line in env_path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        os.environ.setdefault(key.strip(), value.strip().strip('"').strip("'"))


def load_yaml_config(path: str) -> dict[str, Any]:
    config_path = Path(path)
    if not config_path.exists():
        return {"profiles": {}}
    data = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise SystemExit(f"Config file '{path}' must contain a top-level mapping.")
    return data


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Profile gnokey latency under a rate-limited worker pool.")
    parser.add_argument(
        "--config",
        default=DEFAULT_CONFIG_PATH,
        help=f"Path to YAML config (default: {DEFAULT_CONFIG_PATH}; optional).",
    )
    parser.add_argument("--profile", help="Profile name in config. Defaults to active_profile.")
    parser.add_argument("--maxThreads", dest="max_threads", type=int, help="Max number of simultaneous threads.")
    parser.add_argument(
        "--maxQueriesPerSec",
        dest="max_qps",
        type=int,
        help="Max queries per second per thread (aggregate ceiling is threads * this value).",
    )
    parser.add_argument(
        "--mode",
        choices=[m.value for m in Mode],
        help="Mode: addpkg, addpkg+call, call, balanceQuery, or qrender.",
    )
    parser.add_argument("--package", help="Package name (required for call and qrender modes).")
    parser.add_argument("--function", help="Function name for call modes (default: Main).")
    parser.add_argument("--remote", help="Remote endpoint (default: localhost:26657).")
    parser.add_argument("--keyname", help="Key name (default: Dev).")
    parser.add_argument("--pkgdir", help="Package directory (default: .).")
    parser.add_argument("--chainid", help="Chain ID (default: dev).")
    parser.add_argument("--output", help=f"CSV file to write (default: {DEFAULT_CSV_FILE}).")
    parser.add_argument("--duration", type=float, help="Stop after this many seconds (default: run until signalled).")
    parser.add_argument(
        "--flush-interval",
        dest="flush_interval",
        type=float,
        help="Also rewrite the CSV every N seconds while running (default: only at shutdown).",
    )
    parser.add_argument("--log-file", default=None, help="Also write log output to this file.")
    parser.add_argument(
        "--log-level",
        default=os.getenv("PROFILER_LOG_LEVEL", DEFAULT_LOG_LEVEL),
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: PROFILER_LOG_LEVEL or INFO).",
    )
    return parser.parse_args(argv)


def _pick(args: argparse.Namespace, profile: dict[str, Any], key: str) -> Any:
    value = getattr(args, key, None)
    if value is not None:
        return value
    if profile.get(key) is not None:
        return profile[key]
    return DEFAULTS[key]


def _require_int(payload: Any, field_name: str, *, minimum: int) -> int:
    if isinstance(payload, bool) or not isinstance(payload, int):
        raise SystemExit(f"Error: {field_name} must be an integer, got {payload!r}.")
    if payload < minimum:
        raise SystemExit(f"Error: {field_name} must be at least {minimum}.")
    return payload


def _require_float(payload: Any, field_name: str, *, minimum: float) -> float:
    if isinstance(payload, bool) or not isinstance(payload, (int, float)):
        raise SystemExit(f"Error: {field_name} must be a number, got {payload!r}.")
    if payload < minimum:
        raise SystemExit(f"Error: {field_name} cannot be less than {minimum:g}.")
    return float(payload)


def resolve_settings(args: argparse.Namespace, config: dict[str, Any]) -> ProfilerSettings:
    profiles = config.get("profiles") or {}
    profile_name = args.profile or config.get("active_profile")
    profile: dict[str, Any] = {}
    if profile_name:
        profile = profiles.get(profile_name) or {}
        if not profile:
            raise SystemExit(f"Profile '{profile_name}' was not found in {args.config}.")

    values = {key: _pick(args, profile, key) for key in DEFAULTS}
    try:
        mode = Mode(str(values["mode"]))
    except ValueError:
        raise SystemExit(
            f"Unsupported mode: {values['mode']!r}. Expected one of: {', '.join(m.value for m in Mode)}."
        )

    max_threads = _require_int(values["max_threads"], "maxThreads", minimum=1)
    max_qps = _require_int(values["max_qps"], "maxQueriesPerSec", minimum=1)
    duration_s = _require_float(values["duration"], "duration", minimum=0.0)
    flush_interval_s = _require_float(values["flush_interval"], "flush-interval", minimum=0.0)

    settings = ProfilerSettings(
        pool=PoolConfig(max_concurrent_workers=max_threads, max_ops_per_second_per_worker=max_qps),
        mode=mode,
        task=TaskSettings(
            package_name=str(values["package"] or ""),
            function_name=str(values["function"] or ""),
            remote=str(values["remote"]),
            key_name=str(values["keyname"]),
            pkg_dir=str(values["pkgdir"]),
            chain_id=str(values["chainid"]),
        ),
        output=str(values["output"]),
        duration_s=duration_s,
        flush_interval_s=flush_interval_s,
        profile_name=profile_name or "",
    )
    validate_settings(settings)
    return settings


def validate_settings(settings: ProfilerSettings) -> None:
    task = settings.task
    if settings.mode is Mode.ADDPKG and task.function_name:
        raise SystemExit("Error: function argument should not be provided in addpkg mode.")
    if settings.mode is Mode.CALL and not task.package_name:
        raise SystemExit("Error: package argument must be specified in call mode.")
    if settings.mode is Mode.BALANCE_QUERY:
        if task.package_name:
            raise SystemExit("Error: Cannot specify package in balanceQuery mode.")
        if task.function_name:
            raise SystemExit("Error: Cannot specify function in balanceQuery mode.")
        if task.pkg_dir != DEFAULTS["pkgdir"]:
            raise SystemExit("Error: Cannot specify pkgdir in balanceQuery mode.")
    if settings.mode is Mode.QRENDER:
        if not task.package_name:
            raise SystemExit("Error: package must be specified in qrender mode.")
        if task.chain_id != DEFAULTS["chainid"]:
            raise SystemExit("Error: Chain ID cannot be specified in qrender mode.")


def read_stdin_secret(stream: Any = None) -> str:
    """Return the first piped stdin line, or "" when stdin is a terminal."""
    stream = stream if stream is not None else sys.stdin
    if stream is None or stream.isatty():
        return ""
    line = stream.readline()
    return line.rstrip("\r\n")


def print_table(headers: list[str], rows: list[list[str]], indent: str = "") -> None:
    widths = [len(h) for h in headers]
    for row in rows:
        for idx, cell in enumerate(row):
            widths[idx] = max(widths[idx], len(cell))

    def fmt(row: list[str]) -> str:
        return indent + " | ".join(cell.ljust(widths[idx]) for idx, cell in enumerate(row))

    print(fmt(headers))
    print(indent + "-+-".join("-" * w for w in widths))
    for row in rows:
        print(fmt(row))


class ProfilerWorker:
    """Work body of one pool thread: run a cycle, record one sample."""

    def __init__(
        self,
        worker_id: int,
        settings: ProfilerSettings,
        log: ExecutionLog,
        secret: str = "",
        execute: Executor = execute_command,
    ) -> None:
        self.worker_id = worker_id
        self.generator = TaskGenerator(settings.mode, settings.task)
        self.log = log
        self.secret = secret
        self.execute = execute
        self.first_loop = True

    def __call__(self) -> None:
        start = time.perf_counter()
        for task in self.generator.next_cycle():
            command = generate_command(task)
            if self.first_loop:
                logger.info("Executing %s", command)
            result = self.execute(command, self.secret)
            if not result.ok:
                logger.warning("Errors executing command: %s", result.error)
        duration = time.perf_counter() - start
        self.first_loop = False
        print(f"Completed gnokey command in {duration:f} seconds.", flush=True)
        self.log.append(ExecutionSample(timestamp=datetime.now().astimezone(), response_time_s=duration))


class ProfilerRun:
    """Owns the pool and the log for one run, and the single shutdown path."""

    def __init__(self, settings: ProfilerSettings, secret: str = "", execute: Executor = execute_command) -> None:
        self.settings = settings
        self.log = ExecutionLog()
        self.stop_event = threading.Event()
        self.pool = RateLimitedWorkerPool(
            settings.pool,
            lambda worker_id: ProfilerWorker(worker_id, settings, self.log, secret, execute),
            stop_event=self.stop_event,
        )
        self._shutdown_lock = threading.Lock()
        self._started_at = 0.0
        self._finished = False

    def request_stop(self, signum: int | None = None, frame: Any = None) -> None:
        if signum is not None and not self.stop_event.is_set():
            print("\nStopping workers and saving logs...", flush=True)
        self.stop_event.set()

    def install_signal_handlers(self) -> None:
        signal.signal(signal.SIGINT, self.request_stop)
        signal.signal(signal.SIGTERM, self.request_stop)

    def run(self) -> dict[str, Any]:
        self._started_at = time.perf_counter()
        logger.info("About to start worker threads...")
        self.pool.start()
        try:
            self._wait()
        finally:
            summary = self.shutdown()
        return summary

    def _wait(self) -> None:
        duration = self.settings.duration_s
        flush_every = self.settings.flush_interval_s
        next_flush = self._started_at + flush_every
        while not self.stop_event.wait(WAIT_TICK_S):
            now = time.perf_counter()
            if duration > 0 and now - self._started_at >= duration:
                logger.info("Duration of %.1fs reached.", duration)
                break
            if flush_every > 0 and now >= next_flush:
                self.log.persist(self.settings.output)
                next_flush = now + flush_every

    def shutdown(self) -> dict[str, Any]:
        with self._shutdown_lock:
            if self._finished:
                return {}
            self._finished = True
        self.pool.stop()
        if not self.pool.join(SHUTDOWN_GRACE_S):
            logger.warning("%d worker(s) still running a command; abandoning them.", self.pool.alive_workers())
        self.log.close_and_persist(self.settings.output)
        elapsed = time.perf_counter() - self._started_at
        return summarize_samples(self.log.snapshot(), elapsed)


def print_summary(summary: dict[str, Any]) -> None:
    print("\nRun summary:")
    print_table(
        ["completed", "elapsed_s", "ops/s", "lat_mean_s", "lat_p50_s", "lat_p95_s", "lat_p99_s", "lat_max_s"],
        [[
            str(summary["completed"]),
            f"{summary['elapsed_s']:.2f}",
            f"{summary['ops_per_sec']:.2f}",
            f"{summary['lat_mean']:.3f}",
            f"{summary['lat_p50']:.3f}",
            f"{summary['lat_p95']:.3f}",
            f"{summary['lat_p99']:.3f}",
            f"{summary['lat_max']:.3f}",
        ]],
    )


def main(argv: list[str] | None = None) -> None:
    load_local_env()
    args = parse_args(argv)
    setup_logger(args.log_level, args.log_file)
    config = load_yaml_config(args.config)
    settings = resolve_settings(args, config)

    print(f"Profile: {settings.profile_name or '(none)'}")
    print(f"Mode: {settings.mode.value}")
    print(f"Remote: {settings.task.remote}")
    print(
        f"Workers: {settings.pool.max_concurrent_workers} x "
        f"{settings.pool.max_ops_per_second_per_worker} op/s per worker"
    )
    print(f"Output: {settings.output}")
    print("")

    secret = read_stdin_secret()
    run = ProfilerRun(settings, secret)
    run.install_signal_handlers()
    summary = run.run()
    if summary:
        print_summary(summary)


if __name__ == "__main__":
    main()
