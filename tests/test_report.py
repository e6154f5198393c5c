import io
import ipaddress

import pytest
from rich.console import Console

from pingsweep import (
    ProbeResult,
    ReportConfig,
    build_list_report,
    latency_band,
    render_report,
    render_summary,
    sort_results,
)


def make_console(**kwargs):
    kwargs.setdefault("color_system", None)
    return Console(file=io.StringIO(), width=200, **kwargs)


def rendered(results, config, **kwargs):
    out = make_console(**kwargs)
    render_report(results, config, out)
    return out.file.getvalue()


@pytest.fixture
def results():
    return {
        ipaddress.IPv4Address("10.0.0.20"): ProbeResult(average_latency_ms=150.0),
        ipaddress.IPv4Address("10.0.0.3"): ProbeResult(
            average_latency_ms=2.0,
            hostname="gw.lan",
            txt_records=["v=spf1 -all", "site=hq"],
            ipv6_addresses=["fd00::1", "2001:db8::1"],
        ),
        ipaddress.IPv4Address("10.0.0.100"): ProbeResult(average_latency_ms=42.5, hostname="printer.lan"),
    }


@pytest.mark.parametrize("ms, band", [
    (0.0, "low"), (4.99, "low"), (5.0, "medium"), (99.99, "medium"), (100.0, "high"), (2500.0, "high"),
])
def test_latency_band(ms, band):
    assert latency_band(ms) == band


def test_sort_is_numeric_not_lexicographic(results):
    assert [str(a) for a, _ in sort_results(results)] == ["10.0.0.3", "10.0.0.20", "10.0.0.100"]


def test_list_report_layout(results):
    text = rendered(results, ReportConfig(color=False))
    assert text.splitlines()[:8] == [
        "IP: 10.0.0.3",
        "  Hostname: gw.lan",
        "  Average RTT: 2.00 ms",
        "  TXT Records: v=spf1 -all, site=hq",
        "  IPv6 Addresses: fd00::1",
        "  2001:db8::1",
        "IP: 10.0.0.20",
        "  Average RTT: 150.00 ms",
    ]


def test_list_report_omits_empty_fields(results):
    text = rendered(results, ReportConfig(color=False))
    block = text.split("IP: 10.0.0.20")[1].split("IP: ")[0]
    assert "Hostname" not in block
    assert "TXT Records" not in block
    assert "IPv6 Addresses" not in block


def test_list_and_table_show_the_same_data(results):
    listing = rendered(results, ReportConfig(table=False, color=False))
    table = rendered(results, ReportConfig(table=True, color=False))
    for value in [
        "10.0.0.3", "10.0.0.20", "10.0.0.100",
        "gw.lan", "printer.lan",
        "2.00 ms", "150.00 ms", "42.50 ms",
        "v=spf1 -all", "site=hq",
        "fd00::1", "2001:db8::1",
    ]:
        assert value in listing
        assert value in table


def test_table_rows_sorted(results):
    table = rendered(results, ReportConfig(table=True, color=False))
    positions = [table.index(ip + " ") for ip in ("10.0.0.3", "10.0.0.20", "10.0.0.100")]
    assert positions == sorted(positions)


def test_table_has_headers():
    table = rendered({}, ReportConfig(table=True, color=False))
    for header in ("IP", "Hostname", "Average RTT", "TXT Records", "IPv6 Addresses"):
        assert header in table


def test_empty_list_report_prints_nothing():
    assert rendered({}, ReportConfig()) == ""


def test_colour_toggle(results):
    coloured = rendered(results, ReportConfig(color=True), force_terminal=True, color_system="standard")
    plain = rendered(results, ReportConfig(color=False), force_terminal=True, color_system="standard")
    assert "\x1b[" in coloured
    assert "\x1b[" not in plain


def test_latency_colour_follows_band():
    config = ReportConfig()
    items = [(ipaddress.IPv4Address("10.0.0.1"), ProbeResult(average_latency_ms=1.0))]
    spans = build_list_report(items, config).spans
    assert any(str(span.style) == "green" for span in spans)


def test_summary_lines():
    out = make_console()
    render_summary(0, 3.14159, out)
    assert out.file.getvalue().splitlines()[-2:] == ["Total IPs: 0", "Total Time: 3.1s"]
