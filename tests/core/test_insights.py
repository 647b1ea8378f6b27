from __future__ import annotations

from bugreport_analyzer.core.analysis import AnalyzerInput, analyze_basic
from bugreport_analyzer.core.analysis.insights import (
    boot_insights,
    finalize_insights,
    hal_insights,
    merge_duplicate_insights,
    merge_selinux_insights,
    resource_insights,
)
from bugreport_analyzer.core.models import (
    BootStatusSummary,
    BugreportMetadata,
    CpuInfoSummary,
    InsightCard,
    InsightCategory,
    InsightSource,
    KernelParseResult,
    MemInfoSummary,
    Severity,
)
from bugreport_analyzer.core.parsers import (
    parse_anr_trace,
    parse_cpuinfo,
    parse_kernel_log,
    parse_logcat,
    parse_lshal,
    parse_meminfo,
    parse_tombstone,
)

from samples import (
    CPUINFO,
    DEADLOCK_TRACE,
    INPUT_DISPATCH_LINE,
    IO_AND_NETWORK_TRACE,
    KERNEL_LOG,
    LOGCAT,
    LOGCAT_ANR_LINE,
    LSHAL,
    MEMINFO,
    SYSTEM_PROPERTIES,
    VENDOR_TOMBSTONE,
)


def _card(title: str, severity: Severity = Severity.WARNING, source: InsightSource = InsightSource.KERNEL) -> InsightCard:
    return InsightCard(
        id="",
        severity=severity,
        category=InsightCategory.KERNEL,
        title=title,
        description="d",
        source=source,
    )


def test_single_logcat_anr_end_to_end() -> None:
    result = analyze_basic(
        AnalyzerInput(
            metadata=BugreportMetadata(),
            logcat_result=parse_logcat(LOGCAT_ANR_LINE),
            kernel_result=KernelParseResult(),
        )
    )

    assert len(result.logcat_result.anomalies) == 1
    [card] = result.insights
    assert card.id == "insight-1"
    assert card.category == InsightCategory.ANR
    assert card.source == InsightSource.LOGCAT
    assert card.severity == Severity.CRITICAL
    assert card.title == "ANR in com.example.app"
    assert card.debug_commands
    assert result.health_score.breakdown.responsiveness == 80
    assert result.health_score.overall == 95
    assert len(result.timeline) == 1


def test_trace_replaces_only_logcat_anr_cards() -> None:
    result = analyze_basic(
        AnalyzerInput(
            metadata=BugreportMetadata(),
            logcat_result=parse_logcat(f"{INPUT_DISPATCH_LINE}\n{LOGCAT_ANR_LINE}"),
            kernel_result=KernelParseResult(),
            anr_analyses=(parse_anr_trace(IO_AND_NETWORK_TRACE),),
        )
    )

    logcat_cards = [c for c in result.insights if c.source == InsightSource.LOGCAT]
    assert [c.title for c in logcat_cards] == ["Input dispatching timeout: com.example.app/.Main"]
    assert logcat_cards[0].category == InsightCategory.STABILITY
    assert any(c.title == "ANR: I/O on Main Thread in com.example.net" for c in result.insights)


def test_full_aggregation() -> None:
    result = analyze_basic(
        AnalyzerInput(
            metadata=BugreportMetadata(android_version="14"),
            logcat_result=parse_logcat(LOGCAT),
            kernel_result=parse_kernel_log(KERNEL_LOG),
            anr_analyses=(parse_anr_trace(DEADLOCK_TRACE),),
            mem_info=parse_meminfo(MEMINFO),
            cpu_info=parse_cpuinfo(CPUINFO),
            hal_status=parse_lshal(LSHAL, manufacturer="Google"),
            tombstone_analyses=(parse_tombstone(VENDOR_TOMBSTONE, "tombstone_00"),),
            system_properties=SYSTEM_PROPERTIES,
        )
    )

    titles = [c.title for c in result.insights]
    assert titles[:3] == [
        "Fatal Exception: main",
        "ANR: Deadlock in com.example.app",
        "Deadlock: 2 threads in circular wait",
    ]
    # The logcat ANR is replaced by the trace card.
    assert "ANR in com.example.app" not in titles
    assert "OEM HAL non-responsive: keypad@1.4" in titles
    assert [c.id for c in result.insights] == [f"insight-{i}" for i in range(1, len(titles) + 1)]
    assert len(titles) == 8

    severities = [c.severity for c in result.insights]
    assert severities == sorted(severities, key=[Severity.CRITICAL, Severity.WARNING, Severity.INFO].index)
    assert severities.count(Severity.CRITICAL) == 5

    selinux = next(c for c in result.insights if c.title.startswith("SELinux denial:"))
    assert selinux.suggested_allow_rule == "allow untrusted_app system_file:file { read write };"

    health = result.health_score
    assert (health.breakdown.stability, health.breakdown.memory) == (35, 100)
    assert (health.breakdown.responsiveness, health.breakdown.kernel) == (75, 53)
    assert health.overall == 65

    assert result.boot_status is not None
    assert result.boot_status.boot_completed is True
    assert result.boot_status.boot_reason == "reboot,userrequested"
    assert result.boot_status.system_server_restarts == 0


def test_finalize_sorts_by_severity_and_numbers_ids() -> None:
    cards = [_card("a", Severity.INFO), _card("b", Severity.CRITICAL), _card("c"), _card("d", Severity.CRITICAL)]

    out = finalize_insights(cards)

    assert [c.title for c in out] == ["b", "d", "c", "a"]
    assert [c.id for c in out] == ["insight-1", "insight-2", "insight-3", "insight-4"]


def test_merge_duplicate_insights() -> None:
    cards = [_card("Thermal throttling"), _card("Other"), _card("Thermal throttling"), _card("Thermal throttling")]

    out = merge_duplicate_insights(cards)

    assert [c.title for c in out] == ["Thermal throttling (×3)", "Other"]
    assert out[0].description.endswith("Occurred 3 times.")


def test_merge_duplicates_keeps_distinct_sources_apart() -> None:
    cards = [_card("x"), _card("x", source=InsightSource.LOGCAT)]

    assert len(merge_duplicate_insights(cards)) == 2


def test_merge_selinux_insights_by_context_pair() -> None:
    a = "SELinux denial: u:r:a:s0 → u:object_r:b:s0"
    b = "SELinux denial: u:r:c:s0 → u:object_r:d:s0"
    cards = [_card(a, Severity.INFO), _card("Kernel panic"), _card(a, Severity.INFO), _card(b, Severity.INFO)]

    out = merge_selinux_insights(cards)

    assert [c.title for c in out] == ["Kernel panic", f"{a} (×2)", b]


def test_hal_insights_truncated_keeps_only_oem() -> None:
    hal = parse_lshal(
        "\n".join(
            [
                "vendor.acme.keypad@1.0::IKeypad/default  hwbinder  non-responsive",
                "vendor.qti.hardware.camera@1.0::ICamera/default  hwbinder  non-responsive",
                "Command: lshal failed: exit code 9",
            ]
        )
    )

    titles = [c.title for c in hal_insights(hal)]

    assert titles == ["lshal output truncated", "OEM HAL non-responsive: keypad@1.0"]


def test_hal_insights_bsp_issue_is_info() -> None:
    hal = parse_lshal("vendor.qti.hardware.camera@1.0::ICamera/default  hwbinder  declared")

    [card] = hal_insights(hal)

    assert card.severity == Severity.INFO
    assert card.title == "BSP HAL declared: camera@1.0"


def test_resource_insights() -> None:
    cards = resource_insights(
        MemInfoSummary(total_ram_kb=1000, free_ram_kb=50),
        CpuInfoSummary(total_cpu_percent=85.0, io_wait_percent=25.0),
    )

    assert [c.title for c in cards] == ["Low available memory", "High CPU usage", "High I/O wait"]
    assert all(c.source == InsightSource.CROSS for c in cards)
    assert resource_insights(None, None) == []


def test_boot_insights() -> None:
    boot = BootStatusSummary(boot_completed=False, system_server_restarts=2, boot_reason="kernel_panic")

    titles = [c.title for c in boot_insights(boot, have_boot_evidence=True)]

    assert titles == [
        "Abnormal boot reason: kernel_panic",
        "Boot not completed",
        "system_server restarted 2 times",
    ]


def test_boot_not_completed_needs_evidence() -> None:
    boot = BootStatusSummary(boot_completed=False, system_server_restarts=0)

    assert boot_insights(boot, have_boot_evidence=False) == []
