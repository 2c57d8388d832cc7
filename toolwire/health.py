"""Health checks and self-diagnostics.

``check_health`` reports on the running process; ``run_diagnostics`` checks
whether this machine can run the server at all (platform, dependencies,
file and stdio access, and whether the port can be bound).
"""

from __future__ import annotations

import importlib
import logging
import os
import platform
import socket
import sys
import tempfile
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

import psutil

logger = logging.getLogger(__name__)

RUNTIME_DEPENDENCIES = ("pydantic", "psutil", "rich")


class CheckStatus(str, Enum):
    OK = "OK"
    ERROR = "ERROR"


@dataclass
class CheckResult:
    """Outcome of one diagnostic area."""

    status: CheckStatus = CheckStatus.OK
    details: dict[str, Any] = field(default_factory=dict)

    def fail(self, key: str, message: str) -> None:
        self.status = CheckStatus.ERROR
        self.details[key] = f"Error: {message}"


@dataclass
class DiagnosticsReport:
    results: dict[str, CheckResult]

    @property
    def passed(self) -> bool:
        return all(result.status is CheckStatus.OK for result in self.results.values())

    @property
    def status(self) -> str:
        return "PASS" if self.passed else "FAIL"

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "results": {
                name: {"status": result.status.value, "details": result.details}
                for name, result in self.results.items()
            },
        }


def check_health() -> dict[str, Any]:
    """Snapshot of this process: uptime, memory, interpreter."""
    process = psutil.Process()
    memory = process.memory_info()
    uptime = datetime.now().timestamp() - process.create_time()
    return {
        "status": "healthy",
        "uptime_seconds": round(uptime, 2),
        "memory": {
            "rss_mb": round(memory.rss / 1024 / 1024, 1),
            "vms_mb": round(memory.vms / 1024 / 1024, 1),
        },
        "timestamp": datetime.now(UTC).isoformat(),
        "python_version": platform.python_version(),
    }


def _check_platform() -> CheckResult:
    vm = psutil.virtual_memory()
    return CheckResult(
        details={
            "os": platform.system(),
            "release": platform.release(),
            "python": platform.python_version(),
            "arch": platform.machine(),
            "cpus": psutil.cpu_count() or 0,
            "memory": f"{round(vm.total / 1024**3)} GB",
            "freemem": f"{round(vm.available / 1024**2)} MB",
        }
    )


def _check_dependencies() -> CheckResult:
    result = CheckResult()
    for name in RUNTIME_DEPENDENCIES:
        try:
            module = importlib.import_module(name)
        except ImportError as e:
            result.fail(name, str(e))
            continue
        result.details[name] = getattr(module, "__version__", "Loaded successfully")
    return result


def _check_permissions() -> CheckResult:
    result = CheckResult()
    try:
        with tempfile.NamedTemporaryFile("w+", prefix="toolwire-", delete=True) as f:
            f.write("test")
            f.flush()
            f.seek(0)
            f.read()
        result.details["file_io"] = "OK"
    except OSError as e:
        result.fail("file_io", str(e))

    try:
        sys.stdout.write("")
        sys.stderr.write("")
        result.details["stdio"] = "OK"
    except (OSError, ValueError) as e:
        result.fail("stdio", str(e))
    return result


def _check_network(host: str, port: int) -> CheckResult:
    result = CheckResult(details={"host": host, "port": port})
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            if os.name == "posix":
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((host, port))
        result.details["bind"] = "OK"
    except OSError as e:
        result.fail("bind", str(e))
    return result


def run_diagnostics(host: str = "127.0.0.1", port: int = 13378) -> DiagnosticsReport:
    """Run all diagnostic checks.

    Args:
        host: Interface the server would bind.
        port: Port the server would listen on; checked by binding it briefly.
    """
    logger.info("Starting diagnostics...")
    report = DiagnosticsReport(
        results={
            "platform": _check_platform(),
            "dependencies": _check_dependencies(),
            "permissions": _check_permissions(),
            "network": _check_network(host, port),
        }
    )
    logger.info(f"Diagnostics complete. Status: {report.status}")
    return report
