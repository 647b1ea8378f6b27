"""Binder / HAL call-target extraction from ANR thread stacks."""

from __future__ import annotations

import re
from collections.abc import Sequence

from ..models import BinderTarget, StackFrame, SuspectedBinderTarget, ThreadInfo, ThreadState

UNKNOWN_TARGET = BinderTarget(
    interface_name="Unknown",
    package_name="",
    method="",
    caller_class="",
    caller_method="",
)

# at vendor.acme.hardware.keypad.V1_0.IKeypad.getService(IKeypad.java:57)
_HIDL_SERVICE_RE = re.compile(r"at\s+([\w.]+\.V\d+_\d+)\.(I\w+)\.(getService|castFrom)")
_HIDL_ANY_RE = re.compile(r"at\s+([\w.]+\.V\d+_\d+)\.(I\w+)\.(getService|castFrom|\w+)")
_AIDL_STUB_RE = re.compile(r"at\s+([\w.]+)\.(I\w+)\$Stub\.(asInterface|getService)")
_PROXY_CLASS_RE = re.compile(r"\.(I\w+)\$Stub\$Proxy$")
_HIDL_VERSION_RE = re.compile(r"\.V(\d+)_(\d+)$")

# /system/lib64/android.hardware.gnss@1.0.so (android::hardware::gnss::V1_0::BpHwGnss::_hidl_start+260)
_HIDL_SO_RE = re.compile(r"/(android\.hardware\.\w[\w.]*@[\d.]+)\.so\s+\(.*?::(?:BpHw)?(\w+?)::_hidl_(\w+)")
_VENDOR_SO_RE = re.compile(r"/vendor/lib(?:64)?/(?:hw/)?([\w.-]+)\.so")

_STUCK_IN_BINDER = (
    "IPCThreadState::transact",
    "IPCThreadState::talkWithDriver",
    "IPCThreadState::waitForResponse",
    "BinderProxy.transact",
)
_PARKED_STATES = frozenset({ThreadState.WAITING, ThreadState.SLEEPING, ThreadState.TIMED_WAITING})


def _hidl_package(versioned: str) -> str:
    """``android.hardware.gnss.V1_0`` -> ``android.hardware.gnss@1.0``."""
    return _HIDL_VERSION_RE.sub(r"@\1.\2", versioned)


def _strip_last_segment(class_name: str) -> str:
    return re.sub(r"\.\w+$", "", class_name)


def _short_name(class_name: str) -> str:
    return class_name.rsplit(".", 1)[-1]


def _is_framework_plumbing(f: StackFrame) -> bool:
    return (
        f.class_name.startswith("android.os.")
        or f.class_name.startswith("android.hidl.")
        or "$Stub$Proxy" in f.class_name
        or "HwBinder" in f.class_name
    )


def _find_caller(
    frames: Sequence[StackFrame], proxy_index: int, skip_classes: Sequence[str] = ()
) -> StackFrame | None:
    """First Java frame after the proxy that is not binder plumbing or the proxy class."""
    for f in frames[proxy_index + 1 :]:
        if f.is_native or _is_framework_plumbing(f):
            continue
        if any(f.class_name == c or f.class_name.startswith(c + "$") for c in skip_classes):
            continue
        return f
    return None


def _first_app_java(frames: Sequence[StackFrame]) -> StackFrame | None:
    for f in frames:
        if not f.is_native and f.class_name and not f.class_name.startswith("android.os."):
            return f
    return None


def _target(interface_name: str, package_name: str, method: str, caller: StackFrame | None) -> BinderTarget:
    return BinderTarget(
        interface_name=interface_name,
        package_name=package_name,
        method=method,
        caller_class=caller.class_name if caller else "",
        caller_method=caller.method_name if caller else "",
    )


def extract_binder_target_from_frames(frames: Sequence[StackFrame]) -> BinderTarget | None:
    """Locate a HAL call in an arbitrary stack: native HIDL .so, vendor .so, Java HIDL, HAL class."""
    for f in frames:
        if not f.is_native:
            continue
        m = _HIDL_SO_RE.search(f.raw)
        if m:
            return _target(f"I{m.group(2)}", m.group(1), m.group(3), _first_app_java(frames))

        m = _VENDOR_SO_RE.search(f.raw)
        if m and "libbinder" not in m.group(1) and "libhidl" not in m.group(1):
            caller = _first_app_java(frames)
            if caller is not None:
                return _target(m.group(1), "vendor", "", caller)

    for f in frames:
        if f.is_native:
            continue
        m = _HIDL_ANY_RE.search(f.raw)
        if m:
            iface_fqn = f"{m.group(1)}.{m.group(2)}"
            caller = next(
                (
                    jf
                    for jf in frames
                    if not jf.is_native
                    and jf is not f
                    and jf.class_name
                    and not jf.class_name.startswith("android.os.")
                    and not jf.class_name.startswith("android.hidl.")
                    and jf.class_name != iface_fqn
                ),
                None,
            )
            return _target(m.group(2), _hidl_package(m.group(1)), m.group(3), caller)

    for f in frames:
        if f.is_native or not f.class_name:
            continue
        if ".hal." in f.class_name or ".gnss." in f.class_name or "vendor." in f.class_name:
            return _target(_short_name(f.class_name), _strip_last_segment(f.class_name), f.method_name, f)

    return None


def extract_binder_target(frames: Sequence[StackFrame]) -> BinderTarget:
    """Identify the Binder/HAL interface a thread is blocked calling into.

    Ordered fallbacks, first success wins:

    1. HIDL ``I*.getService``/``castFrom`` Java frame
    2. AIDL ``I*$Stub.asInterface``/``getService`` Java frame
    3. ``BinderProxy.transact`` with the interface taken from the ``I*$Stub$Proxy`` frame, else the caller
    4. native HIDL ``.so`` or vendor ``.so`` frame (see ``extract_binder_target_from_frames``)
    5. first Java frame outside ``android.os``/``android.hidl``
    6. ``Unknown``
    """
    for i, f in enumerate(frames):
        if f.is_native:
            continue
        m = _HIDL_SERVICE_RE.search(f.raw)
        if m:
            iface_fqn = f"{m.group(1)}.{m.group(2)}"
            caller = _find_caller(frames, i, [iface_fqn])
            return _target(m.group(2), _hidl_package(m.group(1)), m.group(3), caller)

        m = _AIDL_STUB_RE.search(f.raw)
        if m:
            stub_fqn = f"{m.group(1)}.{m.group(2)}"
            caller = _find_caller(frames, i, [stub_fqn, f"{stub_fqn}$Stub", f"{stub_fqn}$Stub$Proxy"])
            return _target(m.group(2), m.group(1), m.group(3), caller)

    for i, f in enumerate(frames):
        if f.is_native or "BinderProxy.transact" not in f.raw:
            continue
        caller = _find_caller(frames, i)
        for pf in frames[i + 1 :]:
            proxy = None if pf.is_native else _PROXY_CLASS_RE.search(pf.class_name)
            if proxy:
                return _target(proxy.group(1), pf.class_name[: proxy.start()], pf.method_name, caller)
        if caller is not None:
            return _target(
                _short_name(caller.class_name),
                _strip_last_segment(caller.class_name),
                caller.method_name,
                caller,
            )

    native = extract_binder_target_from_frames(frames)
    if native is not None and native.interface_name != "Unknown":
        return native

    for f in frames:
        if (
            not f.is_native
            and f.class_name
            and not f.class_name.startswith("android.os.")
            and not f.class_name.startswith("android.hidl.")
        ):
            return _target(_short_name(f.class_name), _strip_last_segment(f.class_name), f.method_name, f)

    return UNKNOWN_TARGET


def scan_suspected_binder_targets(
    threads: Sequence[ThreadInfo], primary: ThreadInfo
) -> tuple[SuspectedBinderTarget, ...]:
    """Find other non-parked threads stuck in a HAL/Binder call, unique by interface+method."""
    results: list[SuspectedBinderTarget] = []
    seen: set[tuple[str, str]] = set()

    for t in threads:
        if t is primary or t.state in _PARKED_STATES:
            continue
        stack_text = "\n".join(f.raw for f in t.stack_frames)
        if not any(sig in stack_text for sig in _STUCK_IN_BINDER):
            continue

        target = extract_binder_target_from_frames(t.stack_frames)
        if target is None or target.interface_name == "Unknown":
            continue
        key = (target.interface_name, target.method)
        if key in seen:
            continue
        seen.add(key)

        results.append(
            SuspectedBinderTarget(
                interface_name=target.interface_name,
                package_name=target.package_name,
                method=target.method,
                caller_class=target.caller_class,
                caller_method=target.caller_method,
                thread_name=t.name,
                thread_state=t.state,
            )
        )
    return tuple(results)
