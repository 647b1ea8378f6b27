from __future__ import annotations

import pytest

from bugreport_analyzer.core.models import HalStatus
from bugreport_analyzer.core.parsers import parse_cpuinfo, parse_lshal, parse_meminfo
from bugreport_analyzer.core.parsers.dumpsys import classify_oem, compare_versions, infer_hal_status

from samples import CPUINFO, LSHAL, MEMINFO


def test_parse_meminfo() -> None:
    mem = parse_meminfo(MEMINFO)

    assert mem.total_ram_kb == 8_000_000
    assert mem.free_ram_kb == 2_000_000
    assert mem.used_ram_kb == 6_000_000
    assert [(p.process_name, p.pid, p.total_pss_kb) for p in mem.top_processes] == [
        ("system", 1000, 312_456),
        ("com.example.app", 4321, 204_800),
    ]


def test_parse_cpuinfo() -> None:
    cpu = parse_cpuinfo(CPUINFO)

    assert cpu.total_cpu_percent == 34.0
    assert cpu.user_percent == 18.0
    assert cpu.kernel_percent == 12.0
    assert cpu.io_wait_percent == 2.1
    assert [(p.process_name, p.cpu_percent) for p in cpu.top_processes] == [
        ("system_server", 18.0),
        ("com.example.app", 9.5),
    ]


def test_empty_dumpsys_sections() -> None:
    assert parse_meminfo("").total_ram_kb == 0
    assert parse_cpuinfo("").top_processes == ()
    assert parse_lshal("").total_services == 0


def test_hal_family_reports_highest_version_status() -> None:
    hal = parse_lshal("vendor.x@1.0::IFoo  hwbinder  alive\nvendor.x@1.4::IFoo  hwbinder  non-responsive\n")

    assert hal.total_services == 2
    assert hal.alive_count == 1
    assert hal.non_responsive_count == 1
    [family] = hal.families
    assert family.family_name == "vendor.x::IFoo"
    assert family.short_name == "x"
    assert family.highest_version == "1.4"
    assert family.highest_status == HalStatus.NON_RESPONSIVE
    assert family.version_count == 2
    assert hal.vendor_issue_count == 1


def test_hal_newer_alive_version_hides_older_failure() -> None:
    hal = parse_lshal("vendor.x@1.0::IFoo/default  hwbinder  declared\nvendor.x@2.0::IFoo/default  hwbinder  alive\n")

    [family] = hal.families
    assert family.highest_version == "2.0"
    assert family.highest_status == HalStatus.ALIVE
    assert hal.vendor_issue_count == 0


def test_parse_lshal_families_and_oem_classification() -> None:
    hal = parse_lshal(LSHAL, manufacturer="Google")

    by_name = {f.family_name: f for f in hal.families}
    keypad = by_name["vendor.acme.keypad::IKeypad"]
    assert keypad.is_vendor is True
    assert keypad.is_oem is True
    assert keypad.highest_status == HalStatus.NON_RESPONSIVE

    gnss = by_name["android.hardware.gnss::IGnss"]
    assert gnss.is_vendor is False
    assert gnss.is_oem is False
    assert gnss.highest_version == "2.0"
    assert hal.truncated is False


def test_parse_lshal_pipe_table_and_truncation() -> None:
    content = "\n".join(
        [
            "| All binderized services (registered with hwservicemanager)",
            "VINTF R Interface                                   Thread Use Server Clients",
            "| vendor.qti.hardware.display.allocator@1.0::IQtiAllocator/default | hwbinder | N/A |",
            "| android.hardware.power@1.3::IPower/default | hwbinder | alive |",
            "Command: lshal --all failed: exit code 9",
        ]
    )

    hal = parse_lshal(content)

    assert hal.truncated is True
    assert hal.total_services == 2
    assert hal.declared_count == 1
    assert hal.declared_services[0].transport == "hwbinder"
    allocator = next(f for f in hal.families if f.short_name == "allocator")
    assert allocator.is_oem is False


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("vendor.x@1.0::IFoo/default hwbinder non-responsive", HalStatus.NON_RESPONSIVE),
        ("vendor.x@1.0::IFoo/default hwbinder declared", HalStatus.DECLARED),
        ("| vendor.x@1.0::IFoo/default | hwbinder | N/A |", HalStatus.DECLARED),
        ("vendor.x@1.0::IFoo/default hwbinder 1234", HalStatus.ALIVE),
    ],
)
def test_infer_hal_status(text: str, expected: HalStatus) -> None:
    assert infer_hal_status(text) == expected


def test_compare_versions_is_numeric() -> None:
    assert compare_versions("1.10", "1.9") > 0
    assert compare_versions("2.0", "2") == 0
    assert compare_versions("1.0", "1.4") < 0


def test_classify_oem() -> None:
    assert classify_oem("vendor.acme.keypad::IKeypad", True) is True
    assert classify_oem("vendor.qti.hardware.camera::ICamera", True) is False
    assert classify_oem("vendor.google.radio::IRadio", True, manufacturer="Google") is True
    assert classify_oem("android.hardware.gnss::IGnss", False) is False
