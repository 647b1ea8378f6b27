"""ANR thread-dump parser: threads, lock graph, deadlocks and block classification."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass, field

from ..models import (
    ANRTraceAnalysis,
    BinderThreadSummary,
    BlockingChainLink,
    BlockReason,
    Confidence,
    CycleLock,
    CycleThread,
    DeadlockCycle,
    DeadlockInfo,
    LockGraph,
    LockGraphEdge,
    LockGraphNode,
    LockInfo,
    StackFrame,
    ThreadBlockAnalysis,
    ThreadInfo,
    ThreadState,
)
from .binder import extract_binder_target, scan_suspected_binder_targets

logger = logging.getLogger(__name__)

# "main" prio=5 tid=1 Blocked
# "Binder:1234_1" daemon prio=5 tid=12 Native
_THREAD_HEADER_RE = re.compile(r'^"(.+?)"\s+(?:(daemon)\s+)?prio=(\d+)\s+tid=(\d+)\s+(\w+)')
# "android.fg" sysTid=1755   (native-only backtrace dumps)
_NATIVE_THREAD_HEADER_RE = re.compile(r'^"(.+?)"\s+sysTid=(\d+)')
_SYS_TID_RE = re.compile(r"sysTid=(\d+)")
_WAITING_ON_LOCK_RE = re.compile(
    r"- waiting to lock <(0x[\da-fA-F]+)>\s+\(a (.+?)\)\s+held by thread (\d+)"
)
_HELD_LOCK_RE = re.compile(r"- locked <(0x[\da-fA-F]+)>\s+\(a (.+?)\)")
_JAVA_FRAME_RE = re.compile(r"at\s+([\w$.<>]+)\.([\w$<>]+)\((.+?)(?::(\d+))?\)")
_NATIVE_FRAME_RE = re.compile(r"(?:native:\s+)?#\d+\s+pc\s+")
_OAT_JAVA_RE = re.compile(r"\.(?:oat|odex)\s+\((\S+?)\.(\w+)[+)]")

_PID_HEADER_RE = re.compile(
    r"^----- (?:(?:Waiting Channels: )?pid|dumping pid:)\s+(\d+)\s+at\s+(.+?)(?:\s*-----)?$"
)
_CRITICAL_EVENT_PID_RE = re.compile(r"^\s+pid:\s+(\d+)")
_CMD_LINE_RE = re.compile(r"^Cmd line:\s+(.+)")
_SUBJECT_RE = re.compile(r"^Subject:\s+(.+)")
_SUBJECT_THREAD_RE = re.compile(r"thread\s+\(([^)]+)\)")
_BINDER_THREAD_RE = re.compile(r"^binder[_:]", re.IGNORECASE)

_KNOWN_STATES = {s.value: s for s in ThreadState}

IO_PATTERNS = (
    "SQLiteDatabase",
    "SQLiteSession",
    "SharedPreferencesImpl",
    "FileInputStream",
    "FileOutputStream",
    "FileReader",
    "FileWriter",
    "RandomAccessFile",
    "ContentResolver.query",
    "ContentResolver.insert",
    "ContentResolver.update",
    "ContentResolver.delete",
    "AssetManager.open",
    "ZipFile.",
    "android.database.sqlite",
)

NETWORK_PATTERNS = (
    "HttpURLConnection",
    "OkHttp",
    "okhttp3.",
    "Socket.connect",
    "Socket.read",
    "SocketInputStream",
    "SocketOutputStream",
    "SSLSocket",
    "InetAddress",
    "NetworkDispatcher",
    "Volley",
    "retrofit2.",
    "java.net.URL.openConnection",
)

BINDER_CALL_PATTERNS = (
    "BinderProxy.transact",
    "BinderProxy.transactNative",
    "IPCThreadState::transact",
    "IPCThreadState::waitForResponse",
    "android::IPCThreadState",
)

RENDERING_PATTERNS = (
    "android.view.View.draw",
    "android.view.View.measure",
    "android.view.View.layout",
    "android.view.ViewGroup.dispatchDraw",
    "LayoutInflater.inflate",
    "RecyclerView.onLayout",
    "RecyclerView.onMeasure",
    "ThreadedRenderer",
    "ViewRootImpl.performTraversals",
)

CONTENT_PROVIDER_PATTERNS = (
    "ContentProvider$Transport.query",
    "ContentProvider$Transport.insert",
    "ContentProvider$Transport.update",
    "ContentProvider$Transport.delete",
    "ContentProvider$Transport.call",
)

BROADCAST_PATTERNS = (
    "BroadcastReceiver.onReceive",
    "LoadedApk$ReceiverDispatcher",
    "ActivityThread.handleReceiver",
)

APP_STARTUP_PATTERNS = (
    "handleBindApplication",
    "Application.onCreate",
    "ContentProvider.onCreate",
)

# Stack-pattern rules checked in this order after the lock check.
_STACK_RULES: tuple[tuple[BlockReason, tuple[str, ...]], ...] = (
    (BlockReason.IO_ON_MAIN_THREAD, IO_PATTERNS),
    (BlockReason.NETWORK_ON_MAIN_THREAD, NETWORK_PATTERNS),
    (BlockReason.SLOW_BINDER_CALL, BINDER_CALL_PATTERNS),
    (BlockReason.EXPENSIVE_RENDERING, RENDERING_PATTERNS),
    (BlockReason.CONTENT_PROVIDER_SLOW, CONTENT_PROVIDER_PATTERNS),
    (BlockReason.BROADCAST_BLOCKING, BROADCAST_PATTERNS),
    (BlockReason.SLOW_APP_STARTUP, APP_STARTUP_PATTERNS),
)

_SYSTEM_PACKAGE_PREFIXES = (
    "android.",
    "com.android.",
    "java.",
    "javax.",
    "dalvik.",
    "libcore.",
    "sun.",
)

_HIGH_CONFIDENCE = frozenset(
    {
        BlockReason.DEADLOCK,
        BlockReason.LOCK_CONTENTION,
        BlockReason.NETWORK_ON_MAIN_THREAD,
        BlockReason.IO_ON_MAIN_THREAD,
        BlockReason.SLOW_BINDER_CALL,
        BlockReason.BROADCAST_BLOCKING,
        BlockReason.BINDER_POOL_EXHAUSTION,
        BlockReason.CONTENT_PROVIDER_SLOW,
    }
)
_DEPTH_CONFIDENCE = frozenset(
    {BlockReason.HEAVY_COMPUTATION, BlockReason.EXPENSIVE_RENDERING, BlockReason.SLOW_APP_STARTUP}
)
_LOW_CONFIDENCE = frozenset(
    {
        BlockReason.IDLE_MAIN_THREAD,
        BlockReason.SYSTEM_OVERLOAD_CANDIDATE,
        BlockReason.NO_STACK_FRAMES,
        BlockReason.UNKNOWN,
    }
)
_SCAN_OTHER_THREADS = frozenset(
    {BlockReason.IDLE_MAIN_THREAD, BlockReason.SYSTEM_OVERLOAD_CANDIDATE, BlockReason.UNKNOWN}
)


# ---------------------------------------------------------------------------
# Threads


@dataclass(slots=True)
class _ThreadBuilder:
    name: str
    tid: int
    priority: int
    state: ThreadState
    daemon: bool
    sys_tid: int | None = None
    waiting_on_lock: LockInfo | None = None
    held_locks: list[LockInfo] = field(default_factory=list)
    frames: list[StackFrame] = field(default_factory=list)
    raw_lines: list[str] = field(default_factory=list)

    def feed(self, line: str) -> None:
        self.raw_lines.append(line)

        m = _SYS_TID_RE.search(line)
        if m:
            self.sys_tid = int(m.group(1))

        m = _WAITING_ON_LOCK_RE.search(line)
        if m:
            self.waiting_on_lock = LockInfo(
                address=m.group(1), class_name=m.group(2), held_by_tid=int(m.group(3))
            )

        m = _HELD_LOCK_RE.search(line)
        if m:
            self.held_locks.append(LockInfo(address=m.group(1), class_name=m.group(2)))

        raw = line.strip()
        m = _JAVA_FRAME_RE.search(line)
        if m:
            self.frames.append(
                StackFrame(
                    class_name=m.group(1),
                    method_name=m.group(2),
                    file_name=m.group(3),
                    line_number=int(m.group(4)) if m.group(4) else None,
                    is_native=False,
                    raw=raw,
                )
            )
        elif _NATIVE_FRAME_RE.search(line):
            # OAT-compiled Java methods count as Java frames for classification.
            oat = _OAT_JAVA_RE.search(line)
            self.frames.append(
                StackFrame(
                    class_name=oat.group(1) if oat else "",
                    method_name=oat.group(2) if oat else "",
                    file_name=raw,
                    line_number=None,
                    is_native=oat is None,
                    raw=raw,
                )
            )

    def build(self) -> ThreadInfo:
        return ThreadInfo(
            name=self.name,
            tid=self.tid,
            priority=self.priority,
            state=self.state,
            daemon=self.daemon,
            sys_tid=self.sys_tid,
            stack_frames=tuple(self.frames),
            waiting_on_lock=self.waiting_on_lock,
            held_locks=tuple(self.held_locks),
            raw="\n".join(self.raw_lines),
        )


def _start_thread(line: str) -> _ThreadBuilder | None:
    m = _THREAD_HEADER_RE.match(line)
    if m:
        return _ThreadBuilder(
            name=m.group(1),
            daemon=m.group(2) == "daemon",
            priority=int(m.group(3)),
            tid=int(m.group(4)),
            state=_KNOWN_STATES.get(m.group(5), ThreadState.UNKNOWN),
            raw_lines=[line],
        )

    m = _NATIVE_THREAD_HEADER_RE.match(line)
    if m:
        sys_tid = int(m.group(2))
        return _ThreadBuilder(
            name=m.group(1),
            daemon=False,
            priority=0,
            tid=sys_tid,
            sys_tid=sys_tid,
            state=ThreadState.NATIVE,
            raw_lines=[line],
        )
    return None


def parse_threads(lines: Sequence[str]) -> list[ThreadInfo]:
    threads: list[ThreadInfo] = []
    current: _ThreadBuilder | None = None

    for line in lines:
        started = _start_thread(line)
        if started is not None:
            if current is not None:
                threads.append(current.build())
            current = started
            continue
        if current is not None:
            current.feed(line)

    if current is not None:
        threads.append(current.build())
    return threads


def _first_by_tid(threads: Sequence[ThreadInfo]) -> dict[int, ThreadInfo]:
    by_tid: dict[int, ThreadInfo] = {}
    for t in threads:
        by_tid.setdefault(t.tid, t)
    return by_tid


# ---------------------------------------------------------------------------
# Lock graph and deadlocks


def build_lock_graph(threads: Sequence[ThreadInfo]) -> LockGraph:
    """Wait-for graph: one edge per thread waiting on a lock held by another."""
    by_tid = _first_by_tid(threads)
    nodes: list[LockGraphNode] = []
    edges: list[LockGraphEdge] = []
    seen: set[int] = set()

    for t in threads:
        lock = t.waiting_on_lock
        if lock is None or lock.held_by_tid is None:
            continue
        to_tid = lock.held_by_tid

        if t.tid not in seen:
            seen.add(t.tid)
            nodes.append(LockGraphNode(tid=t.tid, thread_name=t.name))
        if to_tid not in seen:
            seen.add(to_tid)
            holder = by_tid.get(to_tid)
            nodes.append(LockGraphNode(tid=to_tid, thread_name=holder.name if holder else f"thread-{to_tid}"))

        edges.append(
            LockGraphEdge(
                from_tid=t.tid,
                to_tid=to_tid,
                lock_address=lock.address,
                lock_class_name=lock.class_name,
            )
        )

    return LockGraph(nodes=tuple(nodes), edges=tuple(edges))


def detect_deadlocks(threads: Sequence[ThreadInfo], graph: LockGraph) -> DeadlockInfo:
    """DFS over the wait-for graph; a back-edge to an on-stack node closes a cycle."""
    if not graph.edges:
        return DeadlockInfo()

    by_tid = _first_by_tid(threads)
    adjacency: dict[int, list[int]] = {}
    for edge in graph.edges:
        adjacency.setdefault(edge.from_tid, []).append(edge.to_tid)

    cycles: list[DeadlockCycle] = []
    visited: set[int] = set()
    on_stack: set[int] = set()
    path: list[int] = []

    def record_cycle(tid: int) -> None:
        cycle_tids = path[path.index(tid) :]
        members = [by_tid[t] for t in cycle_tids if t in by_tid]
        if len(members) < 2:
            return
        cycles.append(
            DeadlockCycle(
                threads=tuple(CycleThread(name=t.name, tid=t.tid) for t in members),
                locks=tuple(
                    CycleLock(address=t.waiting_on_lock.address, class_name=t.waiting_on_lock.class_name)
                    for t in members
                    if t.waiting_on_lock is not None
                ),
            )
        )

    def enter(tid: int, frontier: list[Iterator[int]]) -> None:
        visited.add(tid)
        on_stack.add(tid)
        path.append(tid)
        frontier.append(iter(adjacency.get(tid, ())))

    for node in graph.nodes:
        if node.tid in visited:
            continue
        frontier: list[Iterator[int]] = []
        enter(node.tid, frontier)
        while frontier:
            nxt = next(frontier[-1], None)
            if nxt is None:
                frontier.pop()
                on_stack.discard(path.pop())
            elif nxt in on_stack:
                record_cycle(nxt)
            elif nxt not in visited:
                enter(nxt, frontier)

    return DeadlockInfo(detected=bool(cycles), cycles=tuple(cycles))


# ---------------------------------------------------------------------------
# Binder pool


def _is_polling(thread: ThreadInfo) -> bool:
    return any("nativePollOnce" in f.raw or "IPCThreadState" in f.raw for f in thread.stack_frames)


def summarize_binder_threads(threads: Sequence[ThreadInfo]) -> BinderThreadSummary:
    binder = [t for t in threads if _BINDER_THREAD_RE.match(t.name)]
    idle = sum(1 for t in binder if t.state == ThreadState.NATIVE and _is_polling(t))
    return BinderThreadSummary(
        total=len(binder),
        busy=len(binder) - idle,
        idle=idle,
        exhausted=bool(binder) and idle == 0,
    )


# ---------------------------------------------------------------------------
# Classification


def has_app_frames(frames: Sequence[StackFrame]) -> bool:
    """True when any Java frame is outside the platform/runtime namespaces."""
    return any(not f.is_native and not f.class_name.startswith(_SYSTEM_PACKAGE_PREFIXES) for f in frames)


def classify_main_thread_block(
    thread: ThreadInfo,
    threads: Sequence[ThreadInfo],
    deadlocks: DeadlockInfo,
    binder_threads: BinderThreadSummary,
) -> BlockReason:
    """Priority-ordered decision list; the first matching rule wins."""
    stack = thread.stack_frames
    stack_text = "\n".join(f.raw for f in stack)

    if thread.state == ThreadState.BLOCKED and thread.waiting_on_lock is not None:
        in_cycle = any(ct.tid == thread.tid for c in deadlocks.cycles for ct in c.threads)
        return BlockReason.DEADLOCK if in_cycle else BlockReason.LOCK_CONTENTION

    for reason, patterns in _STACK_RULES:
        if any(p in stack_text for p in patterns):
            return reason

    if binder_threads.exhausted:
        return BlockReason.BINDER_POOL_EXHAUSTION

    if "nativePollOnce" in stack_text or "MessageQueue.next" in stack_text:
        return BlockReason.IDLE_MAIN_THREAD

    if thread.state == ThreadState.RUNNABLE:
        if has_app_frames(stack):
            return BlockReason.HEAVY_COMPUTATION
        return BlockReason.SYSTEM_OVERLOAD_CANDIDATE

    if not stack:
        return BlockReason.NO_STACK_FRAMES

    return BlockReason.UNKNOWN


def estimate_confidence(reason: BlockReason, thread: ThreadInfo) -> Confidence:
    if reason in _HIGH_CONFIDENCE:
        return Confidence.HIGH
    if reason in _DEPTH_CONFIDENCE:
        return Confidence.HIGH if len(thread.stack_frames) > 3 else Confidence.MEDIUM
    if reason in _LOW_CONFIDENCE:
        return Confidence.LOW
    return Confidence.MEDIUM


def build_blocking_chain(start: ThreadInfo, threads: Sequence[ThreadInfo]) -> tuple[BlockingChainLink, ...]:
    """Threads transitively holding the lock `start` waits on, in wait order."""
    by_tid = _first_by_tid(threads)
    chain: list[BlockingChainLink] = []
    visited: set[int] = set()
    current: ThreadInfo | None = start

    while current is not None and current.tid not in visited:
        visited.add(current.tid)
        lock = current.waiting_on_lock
        if lock is None or lock.held_by_tid is None:
            break
        holder = by_tid.get(lock.held_by_tid)
        if holder is None:
            break
        chain.append(BlockingChainLink(name=holder.name, tid=holder.tid, state=holder.state))
        current = holder

    return tuple(chain)


def _find_thread(threads: Sequence[ThreadInfo], name: str) -> ThreadInfo | None:
    if name == "main":
        return next((t for t in threads if t.name == "main" or t.tid == 1), None)
    return next((t for t in threads if t.name == name), None)


def analyze_thread(
    threads: Sequence[ThreadInfo],
    name: str,
    deadlocks: DeadlockInfo,
    binder_threads: BinderThreadSummary,
) -> ThreadBlockAnalysis | None:
    target = _find_thread(threads, name)
    if target is None:
        return None

    reason = classify_main_thread_block(target, threads, deadlocks, binder_threads)
    confidence = estimate_confidence(reason, target)
    binder_target = extract_binder_target(target.stack_frames) if reason == BlockReason.SLOW_BINDER_CALL else None

    suspected = None
    if reason in _SCAN_OTHER_THREADS:
        suspected = scan_suspected_binder_targets(threads, target) or None
        if suspected:
            confidence = Confidence.MEDIUM

    return ThreadBlockAnalysis(
        thread=target,
        block_reason=reason,
        blocking_chain=build_blocking_chain(target, threads),
        confidence=confidence,
        binder_target=binder_target,
        suspected_binder_targets=suspected,
    )


# ---------------------------------------------------------------------------
# Entry points


def parse_anr_trace(content: str) -> ANRTraceAnalysis:
    """Parse one ANR trace file. Unrecognized input yields an empty analysis."""
    lines = content.split("\n")

    pid = 0
    process_name = "unknown"
    timestamp: str | None = None
    subject: str | None = None
    blocked_thread_name: str | None = None

    for line in lines:
        m = _SUBJECT_RE.match(line)
        if m:
            subject = m.group(1).strip()
            tm = _SUBJECT_THREAD_RE.search(subject)
            if tm:
                blocked_thread_name = tm.group(1)

        m = _PID_HEADER_RE.match(line)
        if m:
            pid = int(m.group(1))
            timestamp = m.group(2)

        if pid == 0:
            m = _CRITICAL_EVENT_PID_RE.match(line)
            if m:
                pid = int(m.group(1))

        m = _CMD_LINE_RE.match(line)
        if m:
            process_name = m.group(1).strip()
            break

    threads = parse_threads(lines)
    lock_graph = build_lock_graph(threads)
    deadlocks = detect_deadlocks(threads, lock_graph)
    binder_threads = summarize_binder_threads(threads)

    # Native-only dumps name the main thread after the process.
    main_thread = analyze_thread(threads, "main", deadlocks, binder_threads)
    if main_thread is None and process_name != "unknown":
        main_thread = analyze_thread(threads, process_name, deadlocks, binder_threads)

    blocked_thread = None
    if blocked_thread_name and blocked_thread_name != "main":
        blocked_thread = analyze_thread(threads, blocked_thread_name, deadlocks, binder_threads)

    logger.debug(
        "Parsed ANR trace pid=%d process=%s threads=%d deadlocks=%d",
        pid,
        process_name,
        len(threads),
        len(deadlocks.cycles),
    )
    return ANRTraceAnalysis(
        pid=pid,
        process_name=process_name,
        timestamp=timestamp,
        subject=subject,
        threads=tuple(threads),
        main_thread=main_thread,
        blocked_thread=blocked_thread,
        blocked_thread_name=blocked_thread_name,
        lock_graph=lock_graph,
        deadlocks=deadlocks,
        binder_threads=binder_threads,
    )


def parse_anr_traces(contents: Mapping[str, str]) -> list[ANRTraceAnalysis]:
    """Parse every ANR trace file, skipping any file that fails."""
    analyses: list[ANRTraceAnalysis] = []
    for file_name, content in contents.items():
        try:
            analyses.append(parse_anr_trace(content))
        except Exception as exc:
            logger.warning("Skipping unparseable ANR trace %s: %s", file_name, exc)
    return analyses
