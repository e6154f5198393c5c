#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
pingsweep (async)
Concurrent ICMP sweep of an IPv4 range with reverse DNS, TXT and IPv6 lookups,
rendered as a sorted list or table.

Requirements:
  pip install aiodns rich

Usage examples:
  python pingsweep.py --range 192.168.1.0/24
  python pingsweep.py --range 10.0.0.0/22 --table --parallel 64
  python pingsweep.py --range 172.16.0.0/28 --nameserver 1.1.1.1 -v
"""

import re
import sys
import time
import shutil
import asyncio
import logging
import argparse
import platform
import ipaddress
import contextlib
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

import aiodns

from rich import box
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.progress import Progress, BarColumn, MofNCompleteColumn, TimeElapsedColumn, TimeRemainingColumn
from rich.table import Table
from rich.text import Text

console = Console()
err_console = Console(stderr=True)

log = logging.getLogger("pingsweep")

# ----------------------------- Config & Defaults ------------------------------

PING_COUNT = 3
PING_TIMEOUT = 2.0
DEFAULT_PARALLEL = 255
DNS_TIMEOUT = 2.0

# upper bound (exclusive) in ms, band name, colour
LATENCY_BANDS = (
    (5.0, "low", "green"),
    (100.0, "medium", "yellow"),
    (float("inf"), "high", "red"),
)

RTT_RX = re.compile(r"time[=<]\s*([\d.]+)")

# ---------------------------------- Errors -------------------------------------

class PingSweepError(Exception):
    pass

class ConfigurationError(PingSweepError, ValueError):
    """Bad user input; the sweep never starts."""

class InvalidRangeError(ConfigurationError):
    pass

class ProbeNonResponsive(PingSweepError):
    """The address did not answer, or its ping output could not be read."""

# --------------------------------- Data model ----------------------------------

@dataclass(frozen=True)
class ProbeResult:
    average_latency_ms: float
    hostname: str = ""
    txt_records: List[str] = field(default_factory=list)
    ipv6_addresses: List[str] = field(default_factory=list)
    latency_samples: List[float] = field(default_factory=list)


@dataclass(frozen=True)
class Lookup:
    """Outcome of a best-effort DNS lookup: a value, or the reason there is none."""
    value: Any = None
    error: Optional[str] = None

    @classmethod
    def found(cls, value: Any) -> "Lookup":
        return cls(value=value)

    @classmethod
    def absent(cls, reason: str) -> "Lookup":
        return cls(error=reason)

    @property
    def ok(self) -> bool:
        return self.error is None

    def get(self, default: Any) -> Any:
        return self.value if self.ok and self.value else default


class ResultStore:
    """Address -> ProbeResult map shared by all probe tasks.

    Every write goes through ``put`` under the store lock and each address may
    be written once. After ``freeze`` the store is read-only.
    """

    def __init__(self) -> None:
        self._results: Dict[ipaddress.IPv4Address, ProbeResult] = {}
        self._lock = asyncio.Lock()
        self._frozen = False

    async def put(self, address: ipaddress.IPv4Address, result: ProbeResult) -> None:
        async with self._lock:
            if self._frozen:
                raise RuntimeError("result store is frozen")
            if address in self._results:
                raise KeyError(f"{address} already recorded")
            self._results[address] = result

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def get(self, address: ipaddress.IPv4Address) -> Optional[ProbeResult]:
        return self._results.get(address)

    def items(self):
        return self._results.items()

    def sorted_items(self) -> List[Tuple[ipaddress.IPv4Address, ProbeResult]]:
        return sort_results(self._results)

    def __len__(self) -> int:
        return len(self._results)

    def __contains__(self, address: object) -> bool:
        return address in self._results

    def __iter__(self) -> Iterator[ipaddress.IPv4Address]:
        return iter(self._results)


@dataclass
class ScanSession:
    addresses: List[ipaddress.IPv4Address]
    max_parallel: int
    store: ResultStore = field(default_factory=ResultStore)
    processed: int = 0
    started_at: float = field(default_factory=time.monotonic)
    finished_at: Optional[float] = None

    @property
    def elapsed(self) -> float:
        end = self.finished_at if self.finished_at is not None else time.monotonic()
        return end - self.started_at

# ------------------------------ Address ranges ---------------------------------

def enumerate_addresses(cidr: str) -> List[ipaddress.IPv4Address]:
    """Every address of an IPv4 CIDR block, network and broadcast included, ascending."""
    text = (cidr or "").strip()
    _, slash, prefix = text.partition("/")
    if not slash:
        raise InvalidRangeError(f"invalid CIDR {cidr!r}: expected <address>/<prefix>")
    # prefix length only; netmask or hostmask suffixes are not CIDR
    if not prefix.isdigit():
        raise InvalidRangeError(f"invalid CIDR {cidr!r}: prefix must be a decimal length")
    try:
        network = ipaddress.ip_network(text, strict=False)
    except ValueError as exc:
        raise InvalidRangeError(f"invalid CIDR {cidr!r}: {exc}") from exc
    if network.version != 4:
        raise InvalidRangeError(f"invalid CIDR {cidr!r}: only IPv4 ranges can be swept")
    return list(network)

# ------------------------------- ICMP probing ----------------------------------

def determine_ping_command(count: int = PING_COUNT, timeout: float = PING_TIMEOUT) -> Optional[List[str]]:
    ping_path = shutil.which("ping")
    if not ping_path:
        return None
    system_name = platform.system().lower()
    if system_name == "windows":
        return [ping_path, "-n", str(count), "-w", str(int(timeout * 1000))]
    if system_name == "darwin":
        return [ping_path, "-c", str(count), "-W", str(int(timeout * 1000))]
    return [ping_path, "-c", str(count), "-W", str(max(1, int(timeout)))]


def extract_rtt(output: str) -> List[float]:
    values = []
    for raw in RTT_RX.findall(output):
        try:
            values.append(float(raw))
        except ValueError as exc:
            raise ProbeNonResponsive(f"malformed round-trip time {raw!r}") from exc
    return values


def average(values: List[float]) -> float:
    return sum(values) / len(values)


class Pinger:
    def __init__(self, count: int = PING_COUNT, timeout: float = PING_TIMEOUT,
                 command: Optional[List[str]] = None):
        self.count = count
        self.timeout = timeout
        self.command = command if command is not None else determine_ping_command(count, timeout)

    async def ping(self, ip: str) -> str:
        """Raw ping output for ``ip``; raises ProbeNonResponsive if nothing answered."""
        if not self.command:
            raise ProbeNonResponsive("ping command not available")
        try:
            process = await asyncio.create_subprocess_exec(
                *self.command, ip,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as exc:
            raise ProbeNonResponsive(f"could not run ping: {exc}") from exc

        try:
            stdout, _ = await asyncio.wait_for(process.communicate(), self.count * self.timeout + 2)
        except asyncio.TimeoutError:
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            await process.wait()
            raise ProbeNonResponsive("ping did not finish in time")

        if process.returncode != 0:
            raise ProbeNonResponsive(f"ping exited with status {process.returncode}")
        return (stdout or b"").decode("utf-8", errors="ignore")

# ------------------------------ DNS Components --------------------------------

class DnsClient:
    def __init__(self, nameservers: Optional[List[str]] = None, timeout: float = DNS_TIMEOUT,
                 resolver: Optional[aiodns.DNSResolver] = None):
        if resolver is None:
            kwargs: Dict[str, Any] = {"timeout": timeout, "tries": 1}
            if nameservers:
                kwargs["nameservers"] = nameservers
            resolver = aiodns.DNSResolver(**kwargs)
        self.resolver = resolver

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def close(self) -> None:
        await self.resolver.close()

    async def reverse(self, ip: str) -> Lookup:
        try:
            ans = await self.resolver.gethostbyaddr(ip)
        except Exception as exc:
            return Lookup.absent(f"reverse lookup failed: {exc}")
        name = (getattr(ans, "name", "") or "").rstrip(".")
        return Lookup.found(name) if name else Lookup.absent("no PTR name")

    async def txt(self, hostname: str) -> Lookup:
        if not hostname:
            return Lookup.absent("no hostname")
        try:
            ans = await self.resolver.query(hostname, "TXT")
        except Exception as exc:
            return Lookup.absent(f"TXT lookup failed: {exc}")
        records = []
        for a in ans:
            text = getattr(a, "text", "")
            if isinstance(text, bytes):
                text = text.decode("utf-8", "replace")
            records.append(text)
        return Lookup.found(records)

    async def ipv6(self, hostname: str) -> Lookup:
        if not hostname:
            return Lookup.absent("no hostname")
        found: List[str] = []
        errors: List[str] = []
        # A and AAAA together, then keep the v6 ones
        for rtype in ("A", "AAAA"):
            try:
                ans = await self.resolver.query(hostname, rtype)
            except Exception as exc:
                errors.append(f"{rtype}: {exc}")
                continue
            found.extend(getattr(a, "host") for a in ans)
        if errors and not found:
            return Lookup.absent("address lookup failed: " + "; ".join(errors))
        return Lookup.found(only_ipv6(found))


def only_ipv6(addresses: Iterable[str]) -> List[str]:
    out = []
    for addr in addresses:
        try:
            parsed = ipaddress.ip_address(addr)
        except ValueError:
            continue
        # IPv4-mapped addresses still fit in four octets
        if parsed.version == 6 and parsed.ipv4_mapped is None:
            out.append(str(parsed))
    return out

# ------------------------------ Probe executor ---------------------------------

class ProbeExecutor:
    def __init__(self, pinger: Pinger, dns: DnsClient):
        self.pinger = pinger
        self.dns = dns

    async def probe(self, address: ipaddress.IPv4Address) -> Optional[ProbeResult]:
        """Characterise one address. None means it did not answer the ping."""
        ip = str(address)
        try:
            output = await self.pinger.ping(ip)
            samples = extract_rtt(output)
            if not samples:
                raise ProbeNonResponsive("no round-trip times in ping output")
        except ProbeNonResponsive as exc:
            log.debug("%s: no response (%s)", ip, exc)
            return None

        hostname = self._settle(ip, "hostname", await self.dns.reverse(ip), "")
        txt_records = self._settle(ip, "TXT", await self.dns.txt(hostname), [])
        ipv6_addresses = self._settle(ip, "IPv6", await self.dns.ipv6(hostname), [])

        return ProbeResult(
            average_latency_ms=average(samples),
            hostname=hostname,
            txt_records=list(txt_records),
            ipv6_addresses=list(ipv6_addresses),
            latency_samples=samples,
        )

    @staticmethod
    def _settle(ip: str, what: str, lookup: Lookup, default: Any) -> Any:
        if not lookup.ok:
            log.debug("%s: %s left empty (%s)", ip, what, lookup.error)
        return lookup.get(default)

# --------------------------------- Runner --------------------------------------

class ScanCoordinator:
    def __init__(self, executor: ProbeExecutor, max_parallel: int = DEFAULT_PARALLEL,
                 progress: Optional[Callable[[], None]] = None):
        if max_parallel < 1:
            raise ConfigurationError(f"max_parallel must be >= 1 (got {max_parallel})")
        self.executor = executor
        self.max_parallel = max_parallel
        self.progress = progress

    async def run(self, addresses: Iterable[ipaddress.IPv4Address]) -> ScanSession:
        session = ScanSession(addresses=list(dict.fromkeys(addresses)), max_parallel=self.max_parallel)
        gate = asyncio.Semaphore(self.max_parallel)
        log.info("Sweeping %d addresses, %d in parallel", len(session.addresses), self.max_parallel)

        async def sweep_one(address: ipaddress.IPv4Address):
            try:
                async with gate:
                    result = await self.executor.probe(address)
                    if result is not None:
                        await session.store.put(address, result)
            except Exception as exc:
                log.debug("%s: probe failed: %s", address, exc)
            finally:
                session.processed += 1
                if self.progress:
                    self.progress()

        await asyncio.gather(*(sweep_one(a) for a in session.addresses))

        session.store.freeze()
        session.finished_at = time.monotonic()
        log.info("Sweep finished: %d of %d addresses responded in %.1fs",
                 len(session.store), len(session.addresses), session.elapsed)
        return session


def sweep(cidr: str, max_parallel: int = DEFAULT_PARALLEL, executor: Optional[ProbeExecutor] = None,
          progress: Optional[Callable[[], None]] = None) -> ScanSession:
    addresses = enumerate_addresses(cidr)

    async def _run() -> ScanSession:
        if executor is not None:
            return await ScanCoordinator(executor, max_parallel, progress).run(addresses)
        # aiodns wants a running loop, so the default resolver is built here
        async with DnsClient() as dns:
            return await ScanCoordinator(ProbeExecutor(Pinger(), dns), max_parallel, progress).run(addresses)

    return asyncio.run(_run())

# --------------------------------- Printing ------------------------------------

@dataclass(frozen=True)
class ReportConfig:
    table: bool = False
    color: bool = True

    def style(self, name: str) -> str:
        return name if self.color else ""


def latency_band(ms: float) -> str:
    for limit, band, _ in LATENCY_BANDS:
        if ms < limit:
            return band
    return LATENCY_BANDS[-1][1]


def latency_text(ms: float, config: ReportConfig) -> Text:
    colour = next(c for _, band, c in LATENCY_BANDS if band == latency_band(ms))
    return Text(f"{ms:.2f} ms", style=config.style(colour))


def sort_results(results: Mapping[ipaddress.IPv4Address, ProbeResult]) -> List[Tuple[ipaddress.IPv4Address, ProbeResult]]:
    return sorted(results.items(), key=lambda item: int(ipaddress.IPv4Address(item[0])))


def build_list_report(items: List[Tuple[ipaddress.IPv4Address, ProbeResult]], config: ReportConfig) -> Text:
    out = Text()
    for addr, res in items:
        out.append("IP: ")
        out.append(str(addr), style=config.style("blue"))
        out.append("\n")
        if res.hostname:
            out.append("  Hostname: ")
            out.append(res.hostname, style=config.style("cyan"))
            out.append("\n")
        out.append("  Average RTT: ")
        out.append_text(latency_text(res.average_latency_ms, config))
        out.append("\n")
        if res.txt_records:
            out.append("  TXT Records: ")
            out.append(", ".join(res.txt_records), style=config.style("white"))
            out.append("\n")
        if res.ipv6_addresses:
            out.append("  IPv6 Addresses: ")
            out.append("\n  ".join(res.ipv6_addresses), style=config.style("blue"))
            out.append("\n")
    out.rstrip()
    return out


def build_table_report(items: List[Tuple[ipaddress.IPv4Address, ProbeResult]], config: ReportConfig) -> Table:
    table = Table(box=box.SQUARE)
    table.add_column("IP", style=config.style("blue"), no_wrap=True)
    table.add_column("Hostname", style=config.style("cyan"))
    table.add_column("Average RTT", justify="right", no_wrap=True)
    table.add_column("TXT Records")
    table.add_column("IPv6 Addresses", no_wrap=True)
    for addr, res in items:
        table.add_row(
            str(addr),
            res.hostname,
            latency_text(res.average_latency_ms, config),
            "\n".join(res.txt_records),
            "\n".join(res.ipv6_addresses),
        )
    return table


def render_report(results: Mapping[ipaddress.IPv4Address, ProbeResult], config: ReportConfig,
                  out: Optional[Console] = None) -> None:
    out = out or console
    items = sort_results(results)
    if config.table:
        out.print(build_table_report(items, config))
    elif items:
        out.print(build_list_report(items, config))


def render_summary(total: int, elapsed: float, out: Optional[Console] = None) -> None:
    out = out or console
    out.print(f"\nTotal IPs: {total}", highlight=False)
    out.print(f"Total Time: {elapsed:.1f}s", highlight=False)

# ----------------------------------- CLI ---------------------------------------

def setup_logging(level: str = "WARNING") -> None:
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="pingsweep (async) – ICMP sweep with DNS enrichment",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser.add_argument("--range", "--cidr", dest="range", required=True,
                        help="CIDR range to sweep (e.g., 192.168.1.0/24)")
    parser.add_argument("--table", action="store_true", help="Display results in a table")
    parser.add_argument("--parallel", type=int, default=DEFAULT_PARALLEL, help="Maximum number of parallel pings")
    parser.add_argument("--no-color", action="store_true", help="Disable coloured output")
    parser.add_argument("--nameserver", action="append", dest="nameservers",
                        help="DNS server to query (repeatable; default: system resolvers)")
    parser.add_argument("--dns-timeout", type=float, default=DNS_TIMEOUT, help="DNS query timeout in seconds")
    parser.add_argument("--no-progress", action="store_true", help="Hide the progress bar")
    parser.add_argument("--log-level", default="WARNING", choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                        help="Log verbosity")
    parser.add_argument("-v", "--verbose", dest="log_level", action="store_const", const="DEBUG",
                        help="Shorthand for --log-level DEBUG")
    return parser


async def _sweep(addresses: List[ipaddress.IPv4Address], args: argparse.Namespace,
                 progress: Callable[[], None]) -> ScanSession:
    async with DnsClient(nameservers=args.nameservers, timeout=args.dns_timeout) as dns:
        return await ScanCoordinator(ProbeExecutor(Pinger(), dns), args.parallel, progress).run(addresses)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)

    try:
        addresses = enumerate_addresses(args.range)
        if args.parallel < 1:
            raise ConfigurationError(f"--parallel must be >= 1 (got {args.parallel})")
    except ConfigurationError as exc:
        console.print(f"[red]Error: {escape(str(exc))}[/]", highlight=False)
        return 2

    config = ReportConfig(table=args.table, color=not args.no_color)
    start = time.time()

    with Progress(
        "[progress.description]{task.description}",
        BarColumn(bar_width=None),
        MofNCompleteColumn(),
        "•",
        TimeElapsedColumn(),
        "•",
        TimeRemainingColumn(),
        console=console,
        transient=True,
        disable=args.no_progress,
    ) as prog:
        t_ping = prog.add_task("[cyan]Pinging...", total=len(addresses))
        session = asyncio.run(_sweep(addresses, args, lambda: prog.update(t_ping, advance=1)))

    render_report(session.store, config)
    render_summary(len(session.store), time.time() - start)
    return 0


def run() -> None:
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user.[/]")
        sys.exit(130)


if __name__ == "__main__":
    run()
