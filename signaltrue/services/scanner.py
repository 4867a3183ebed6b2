# signaltrue/services/scanner.py
from __future__ import annotations

import asyncio
import logging
import struct
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from starlette.concurrency import run_in_threadpool

from signaltrue.core.config import Settings

logger = logging.getLogger(__name__)

EICAR_SIGNATURE = b"X5O!P%@AP[4\\PZX54(P^)7CC)7}$EICAR-STANDARD-ANTIVIRUS-TEST-FILE!$H+H*"


class ScanVerdict(str, Enum):
    CLEAN = "clean"
    INFECTED = "infected"
    ERROR = "error"


@dataclass(frozen=True)
class ScanResult:
    verdict: ScanVerdict
    detail: Optional[str] = None

    @property
    def is_clean(self) -> bool:
        return self.verdict is ScanVerdict.CLEAN


class ContentScanner:
    """
    Uniform contract around a malware scanning capability.

    scan() never raises for scanner trouble: unreachable, timed out or
    confused scanners all come back as ScanVerdict.ERROR, and callers treat
    anything but CLEAN as a rejection. No retries.
    """

    name = "base"

    def __init__(self, *, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds

    async def scan(self, path: Path) -> ScanResult:
        try:
            return await asyncio.wait_for(self._scan(path), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning("[scanner] %s timed out after %.2fs", self.name, self.timeout_seconds)
            return ScanResult(ScanVerdict.ERROR, "timeout")
        except OSError as exc:
            logger.warning("[scanner] %s unavailable: %s", self.name, exc)
            return ScanResult(ScanVerdict.ERROR, "unavailable")

    async def _scan(self, path: Path) -> ScanResult:
        raise NotImplementedError


class SimulatedScanner(ContentScanner):
    """
    Deterministic stand-in for a real engine. Flags the EICAR test string, and
    reports every file infected while force_infected is set. The flag lives on
    the instance so it can be flipped at runtime without touching process config.
    """

    name = "simulated"

    def __init__(
        self,
        *,
        timeout_seconds: float,
        force_infected: bool = False,
        delay_seconds: float = 0.0,
        unavailable: bool = False,
    ):
        super().__init__(timeout_seconds=timeout_seconds)
        self.force_infected = force_infected
        self.delay_seconds = delay_seconds
        self.unavailable = unavailable

    async def _scan(self, path: Path) -> ScanResult:
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)
        if self.unavailable:
            raise ConnectionRefusedError("simulated scanner offline")
        if self.force_infected:
            return ScanResult(ScanVerdict.INFECTED, "Simulated-Infection")

        data = await run_in_threadpool(path.read_bytes)
        if EICAR_SIGNATURE in data:
            return ScanResult(ScanVerdict.INFECTED, "Eicar-Test-Signature")
        return ScanResult(ScanVerdict.CLEAN)


class ClamAVScanner(ContentScanner):
    """
    clamd client speaking the INSTREAM command over TCP.
    """

    name = "clamav"
    CHUNK = 64 * 1024

    def __init__(self, *, timeout_seconds: float, host: str, port: int):
        super().__init__(timeout_seconds=timeout_seconds)
        self.host = host
        self.port = port

    async def _scan(self, path: Path) -> ScanResult:
        reader, writer = await asyncio.open_connection(self.host, self.port)
        try:
            writer.write(b"zINSTREAM\0")
            with open(path, "rb") as f:
                while True:
                    chunk = await run_in_threadpool(f.read, self.CHUNK)
                    if not chunk:
                        break
                    writer.write(struct.pack("!L", len(chunk)) + chunk)
                    await writer.drain()
            writer.write(struct.pack("!L", 0))
            await writer.drain()
            reply = await reader.readuntil(b"\0")
        except asyncio.IncompleteReadError as exc:
            raise ConnectionResetError("clamd closed the connection") from exc
        finally:
            writer.close()

        return parse_clamd_reply(reply)


def parse_clamd_reply(reply: bytes) -> ScanResult:
    """
    b"stream: OK\\0"                          -> CLEAN
    b"stream: Eicar-Test-Signature FOUND\\0"  -> INFECTED
    anything else (e.g. "INSTREAM size limit exceeded. ERROR") -> ERROR
    """
    text = reply.rstrip(b"\0").decode("utf-8", errors="replace").strip()
    _, _, status = text.partition(": ")
    if status == "OK":
        return ScanResult(ScanVerdict.CLEAN)
    if status.endswith(" FOUND"):
        return ScanResult(ScanVerdict.INFECTED, status[: -len(" FOUND")])
    return ScanResult(ScanVerdict.ERROR, text or "empty reply")


def build_scanner(settings: Settings) -> ContentScanner:
    if settings.scanner_backend == "clamav":
        return ClamAVScanner(
            timeout_seconds=settings.scan_timeout_seconds,
            host=settings.clamav_host,
            port=settings.clamav_port,
        )
    if settings.scanner_backend == "simulated":
        return SimulatedScanner(
            timeout_seconds=settings.scan_timeout_seconds,
            force_infected=settings.scan_simulate_infected,
        )
    raise ValueError(f"Unknown scanner backend: {settings.scanner_backend}")
