from __future__ import annotations

from bugreport_analyzer.core.models import BlockReason, Confidence, ThreadState
from bugreport_analyzer.core.parsers import parse_anr_trace, parse_anr_traces
from bugreport_analyzer.core.parsers.anr import build_lock_graph, detect_deadlocks, parse_threads

from samples import (
    BINDER_EXHAUSTED_TRACE,
    DEADLOCK_TRACE,
    IO_AND_NETWORK_TRACE,
    NATIVE_ONLY_TRACE,
    STUCK_HAL_TRACE,
)


def test_parse_header_and_threads() -> None:
    analysis = parse_anr_trace(DEADLOCK_TRACE)

    assert analysis.pid == 4321
    assert analysis.process_name == "com.example.app"
    assert analysis.timestamp == "2024-01-15 10:30:45.123456789+0000"
    assert [t.name for t in analysis.threads] == ["main", "Worker", "Signal Catcher"]

    main = analysis.threads[0]
    assert main.state == ThreadState.BLOCKED
    assert main.sys_tid == 4321
    assert main.waiting_on_lock is not None
    assert main.waiting_on_lock.address == "0x0a1b2c3d"
    assert main.waiting_on_lock.held_by_tid == 2
    assert [lock.class_name for lock in main.held_locks] == ["com.example.app.Cache"]
    assert main.stack_frames[0].class_name == "com.example.app.Repository"
    assert main.stack_frames[0].method_name == "save"
    assert main.stack_frames[0].line_number == 42

    catcher = analysis.threads[2]
    assert catcher.daemon is True
    assert catcher.priority == 10


def test_deadlock_between_main_and_worker() -> None:
    analysis = parse_anr_trace(DEADLOCK_TRACE)

    assert analysis.deadlocks.detected is True
    assert len(analysis.deadlocks.cycles) == 1
    cycle = analysis.deadlocks.cycles[0]
    assert {t.tid for t in cycle.threads} == {1, 2}
    assert {lock.address for lock in cycle.locks} == {"0x0a1b2c3d", "0x0d4e5f60"}

    main = analysis.main_thread
    assert main is not None
    assert main.block_reason == BlockReason.DEADLOCK
    assert main.confidence == Confidence.HIGH
    assert main.blocking_chain[0].name == "Worker"
    assert main.blocking_chain[0].state == ThreadState.BLOCKED


def test_acyclic_wait_is_lock_contention() -> None:
    trace = "\n".join(
        [
            "Cmd line: com.example.app",
            '"main" prio=5 tid=1 Blocked',
            "  at com.example.app.Repository.save(Repository.java:42)",
            "  - waiting to lock <0x0a1b2c3d> (a java.lang.Object) held by thread 2",
            '"Worker" prio=5 tid=2 Runnable',
            "  at com.example.app.Worker.compute(Worker.java:30)",
            "  - locked <0x0a1b2c3d> (a java.lang.Object)",
        ]
    )

    analysis = parse_anr_trace(trace)

    assert analysis.deadlocks.detected is False
    assert analysis.main_thread is not None
    assert analysis.main_thread.block_reason == BlockReason.LOCK_CONTENTION
    assert [link.name for link in analysis.main_thread.blocking_chain] == ["Worker"]


def test_lock_graph_has_one_edge_per_waiting_thread() -> None:
    for trace in (DEADLOCK_TRACE, BINDER_EXHAUSTED_TRACE, IO_AND_NETWORK_TRACE):
        threads = parse_threads(trace.split("\n"))
        graph = build_lock_graph(threads)
        waiting = [t for t in threads if t.waiting_on_lock and t.waiting_on_lock.held_by_tid is not None]
        assert len(graph.edges) == len(waiting)


def test_three_thread_cycle() -> None:
    lines = []
    for tid, waits_on in ((1, 2), (2, 3), (3, 1)):
        lines += [
            f'"t{tid}" prio=5 tid={tid} Blocked',
            f"  - waiting to lock <0x{tid:08x}> (a java.lang.Object) held by thread {waits_on}",
        ]
    threads = parse_threads(lines)

    deadlocks = detect_deadlocks(threads, build_lock_graph(threads))

    assert deadlocks.detected is True
    assert [sorted(t.tid for t in c.threads) for c in deadlocks.cycles] == [[1, 2, 3]]


def test_io_pattern_beats_network_pattern() -> None:
    analysis = parse_anr_trace(IO_AND_NETWORK_TRACE)

    assert analysis.main_thread is not None
    assert analysis.main_thread.block_reason == BlockReason.IO_ON_MAIN_THREAD
    assert analysis.main_thread.confidence == Confidence.HIGH


def test_network_on_main_thread() -> None:
    trace = "\n".join(
        [
            "Cmd line: com.example.net",
            '"main" prio=5 tid=1 Native',
            "  at java.net.SocketInputStream.socketRead0(Native method)",
            "  at com.example.net.Api.fetch(Api.java:12)",
        ]
    )

    analysis = parse_anr_trace(trace)

    assert analysis.main_thread is not None
    assert analysis.main_thread.block_reason == BlockReason.NETWORK_ON_MAIN_THREAD


def test_binder_pool_exhaustion_beats_idle_main_thread() -> None:
    analysis = parse_anr_trace(BINDER_EXHAUSTED_TRACE)

    assert analysis.binder_threads.total == 2
    assert analysis.binder_threads.idle == 0
    assert analysis.binder_threads.exhausted is True
    assert analysis.main_thread is not None
    assert analysis.main_thread.block_reason == BlockReason.BINDER_POOL_EXHAUSTION


def test_idle_main_thread_has_low_confidence() -> None:
    trace = "\n".join(
        [
            "Cmd line: com.example.app",
            '"main" prio=5 tid=1 Native',
            "  at android.os.MessageQueue.nativePollOnce(Native method)",
            "  at android.os.MessageQueue.next(MessageQueue.java:335)",
        ]
    )

    analysis = parse_anr_trace(trace)

    assert analysis.main_thread is not None
    assert analysis.main_thread.block_reason == BlockReason.IDLE_MAIN_THREAD
    assert analysis.main_thread.confidence == Confidence.LOW


def test_runnable_app_code_is_heavy_computation() -> None:
    trace = "\n".join(
        [
            "Cmd line: com.example.app",
            '"main" prio=5 tid=1 Runnable',
            "  at com.example.app.Sorter.sort(Sorter.java:10)",
            "  at com.example.app.Sorter.sort(Sorter.java:12)",
        ]
    )

    analysis = parse_anr_trace(trace)

    assert analysis.main_thread is not None
    assert analysis.main_thread.block_reason == BlockReason.HEAVY_COMPUTATION
    assert analysis.main_thread.confidence == Confidence.MEDIUM


def test_subject_names_blocked_thread() -> None:
    trace = "\n".join(
        [
            "Subject: Input dispatching timed out (thread (RenderThread) is not responding)",
            "Cmd line: com.example.app",
            '"main" prio=5 tid=1 Native',
            "  at android.os.MessageQueue.nativePollOnce(Native method)",
            '"RenderThread" prio=5 tid=5 Runnable',
            "  at android.view.ThreadedRenderer.draw(ThreadedRenderer.java:10)",
        ]
    )

    analysis = parse_anr_trace(trace)

    assert analysis.blocked_thread_name == "RenderThread"
    assert analysis.blocked_thread is not None
    assert analysis.primary is analysis.blocked_thread
    assert analysis.blocked_thread.block_reason == BlockReason.EXPENSIVE_RENDERING


def test_unrecognized_input_yields_empty_analysis() -> None:
    analysis = parse_anr_trace("nothing to see here")

    assert analysis.pid == 0
    assert analysis.process_name == "unknown"
    assert analysis.threads == ()
    assert analysis.main_thread is None
    assert analysis.deadlocks.detected is False


def test_parse_anr_traces_keeps_every_file() -> None:
    analyses = parse_anr_traces({"anr_1": DEADLOCK_TRACE, "anr_2": IO_AND_NETWORK_TRACE})

    assert [a.process_name for a in analyses] == ["com.example.app", "com.example.net"]


def test_slow_binder_call_extracts_hidl_target() -> None:
    trace = "\n".join(
        [
            "Cmd line: com.example.app",
            '"main" prio=5 tid=1 Native',
            "  #00 pc 000a1234  /system/lib64/libbinder.so (android::IPCThreadState::transact+100)",
            "  at android.os.HwBinder.transact(Native method)",
            "  at vendor.acme.hardware.keypad.V1_0.IKeypad.getService(IKeypad.java:57)",
            "  at com.example.app.KeypadManager.connect(KeypadManager.java:20)",
        ]
    )

    analysis = parse_anr_trace(trace)

    main = analysis.main_thread
    assert main is not None
    assert main.block_reason == BlockReason.SLOW_BINDER_CALL
    assert main.thread.stack_frames[0].is_native
    target = main.binder_target
    assert target is not None
    assert target.interface_name == "IKeypad"
    assert target.package_name == "vendor.acme.hardware.keypad@1.0"
    assert target.method == "getService"
    assert target.caller_class == "com.example.app.KeypadManager"


def test_native_only_dump_finds_main_thread_by_process_name() -> None:
    analysis = parse_anr_trace(NATIVE_ONLY_TRACE)

    assert [t.name for t in analysis.threads] == ["com.example.svc", "Signal Catcher"]
    first = analysis.threads[0]
    assert (first.tid, first.sys_tid, first.priority) == (7000, 7000, 0)
    assert first.state == ThreadState.NATIVE
    assert all(f.is_native for f in first.stack_frames)

    main = analysis.main_thread
    assert main is not None
    assert main.thread.name == "com.example.svc"
    assert main.block_reason == BlockReason.UNKNOWN
    assert main.confidence == Confidence.LOW
    assert main.suspected_binder_targets is None


def test_oat_and_odex_frames_count_as_java() -> None:
    trace = "\n".join(
        [
            "Cmd line: com.example.app",
            '"main" prio=5 tid=1 Runnable',
            "  native: #00 pc 00000000001a2b3c  /data/app/com.example.app-1/oat/arm64/base.odex "
            "(com.example.app.Sorter.sort+180)",
            "  native: #01 pc 0000000000200000  /system/framework/arm64/boot-framework.oat "
            "(android.os.Handler.dispatchMessage+96)",
        ]
    )

    analysis = parse_anr_trace(trace)

    main = analysis.main_thread
    assert main is not None
    frames = main.thread.stack_frames
    assert [(f.class_name, f.method_name, f.is_native) for f in frames] == [
        ("com.example.app.Sorter", "sort", False),
        ("android.os.Handler", "dispatchMessage", False),
    ]
    assert main.block_reason == BlockReason.HEAVY_COMPUTATION


def test_runnable_framework_only_stack_is_system_overload() -> None:
    trace = "\n".join(
        [
            "Cmd line: com.example.app",
            '"main" prio=5 tid=1 Runnable',
            "  at android.os.Handler.dispatchMessage(Handler.java:106)",
            "  at android.os.Looper.loop(Looper.java:223)",
        ]
    )

    analysis = parse_anr_trace(trace)

    assert analysis.main_thread is not None
    assert analysis.main_thread.block_reason == BlockReason.SYSTEM_OVERLOAD_CANDIDATE
    assert analysis.main_thread.confidence == Confidence.LOW
    assert analysis.main_thread.suspected_binder_targets is None


def test_stuck_hal_on_other_thread_raises_confidence() -> None:
    analysis = parse_anr_trace(STUCK_HAL_TRACE)

    main = analysis.main_thread
    assert main is not None
    assert main.block_reason == BlockReason.SYSTEM_OVERLOAD_CANDIDATE
    assert main.confidence == Confidence.MEDIUM
    # The parked thread is skipped even though it sits in a binder call.
    assert main.suspected_binder_targets is not None
    [suspect] = main.suspected_binder_targets
    assert suspect.interface_name == "IGnss"
    assert suspect.package_name == "android.hardware.gnss@1.0"
    assert suspect.method == "start"
    assert suspect.thread_name == "HwBinder:7100_1"
    assert suspect.thread_state == ThreadState.NATIVE


def test_slow_binder_call_extracts_aidl_stub_target() -> None:
    trace = "\n".join(
        [
            "Cmd line: com.example.app",
            '"main" prio=5 tid=1 Native',
            "  at android.os.BinderProxy.transactNative(Native method)",
            "  at android.os.BinderProxy.transact(BinderProxy.java:540)",
            "  at com.example.svc.IRemote$Stub.asInterface(IRemote.java:30)",
            "  at com.example.app.RemoteClient.bind(RemoteClient.java:15)",
        ]
    )

    analysis = parse_anr_trace(trace)

    main = analysis.main_thread
    assert main is not None
    assert main.block_reason == BlockReason.SLOW_BINDER_CALL
    target = main.binder_target
    assert target is not None
    assert (target.interface_name, target.package_name, target.method) == ("IRemote", "com.example.svc", "asInterface")
    assert (target.caller_class, target.caller_method) == ("com.example.app.RemoteClient", "bind")


def test_slow_binder_call_extracts_proxy_target() -> None:
    trace = "\n".join(
        [
            "Cmd line: com.example.app",
            '"main" prio=5 tid=1 Native',
            "  at android.os.BinderProxy.transactNative(Native method)",
            "  at android.os.BinderProxy.transact(BinderProxy.java:540)",
            "  at com.example.svc.IRemote$Stub$Proxy.fetchData(IRemote.java:120)",
            "  at com.example.app.Repo.load(Repo.java:44)",
        ]
    )

    analysis = parse_anr_trace(trace)

    main = analysis.main_thread
    assert main is not None
    target = main.binder_target
    assert target is not None
    assert (target.interface_name, target.package_name, target.method) == ("IRemote", "com.example.svc", "fetchData")
    assert (target.caller_class, target.caller_method) == ("com.example.app.Repo", "load")


def test_content_provider_query_on_main_thread() -> None:
    trace = "\n".join(
        [
            "Cmd line: com.example.app",
            '"main" prio=5 tid=1 Native',
            "  at android.content.ContentProvider$Transport.query(ContentProvider.java:240)",
            "  at com.example.app.Provider.query(Provider.java:31)",
        ]
    )

    analysis = parse_anr_trace(trace)

    assert analysis.main_thread is not None
    assert analysis.main_thread.block_reason == BlockReason.CONTENT_PROVIDER_SLOW
    assert analysis.main_thread.confidence == Confidence.HIGH


def test_bind_application_is_slow_app_startup() -> None:
    trace = "\n".join(
        [
            "Cmd line: com.example.app",
            '"main" prio=5 tid=1 Native',
            "  at com.example.app.App.onCreate(App.java:25)",
            "  at android.app.Instrumentation.callApplicationOnCreate(Instrumentation.java:1192)",
            "  at android.app.ActivityThread.handleBindApplication(ActivityThread.java:6712)",
        ]
    )

    analysis = parse_anr_trace(trace)

    assert analysis.main_thread is not None
    assert analysis.main_thread.block_reason == BlockReason.SLOW_APP_STARTUP
    assert analysis.main_thread.confidence == Confidence.MEDIUM


def test_main_thread_without_frames() -> None:
    trace = "\n".join(
        [
            "Cmd line: com.example.app",
            '"main" prio=5 tid=1 Native',
            "  | sysTid=8000 nice=0 cgrp=top-app",
        ]
    )

    analysis = parse_anr_trace(trace)

    assert analysis.main_thread is not None
    assert analysis.main_thread.thread.sys_tid == 8000
    assert analysis.main_thread.block_reason == BlockReason.NO_STACK_FRAMES
    assert analysis.main_thread.confidence == Confidence.LOW
