#!/usr/bin/env python3
"""
Resumable, time-bounded breadth-first traversal of a OneDrive folder tree.

Each session takes the front entry of the checkpoint queue, diffs the folder
against the permissions it inherited, diffs every file directly inside it,
and appends its subfolders to the back of the queue. The session stops when
the queue is empty (completed) or its time budget runs out (paused). A
folder and its files are always processed as one unit, so a pause never
leaves half a folder behind.
"""

import logging
import time
from enum import Enum
from typing import Callable, List, NamedTuple

from .checkpoint import CheckpointStore, QueueEntry
from .diff import Finding, compare
from .errors import AccessDenied, CorruptEntry, GraphApiError, GraphUnavailable, NotFound
from .graph_store import NodeKind
from .permissions import PermissionSet, normalize
from .report import PartitionState, ReportWriter

logger = logging.getLogger(__name__)

PARTITION_KEY = "partition"

# Node-level failures; they are reported and the walk goes on.
# GraphUnavailable is excluded: it ends the session instead.
NODE_ERRORS = (NotFound, AccessDenied, GraphApiError)


class EngineState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"


class SessionReport(NamedTuple):
    state: EngineState
    processed: int
    findings: int
    remaining: int


class AuditEngine:
    """
    Drives one audit session over the persisted queue.

    Args:
        tree_store: source of nodes, children and raw grants
        checkpoint: persisted FIFO queue
        writer: report writer the findings are sent to
        partition: partition state to continue writing from
        budget_seconds: wall-clock budget of one session
        domain_label: organization domain shown in domain-access text
        clock: monotonic clock, replaceable in tests
    """

    def __init__(self, tree_store, checkpoint: CheckpointStore, writer: ReportWriter,
                 partition: PartitionState, budget_seconds: float, domain_label: str = "",
                 clock: Callable[[], float] = time.monotonic):
        self.tree_store = tree_store
        self.checkpoint = checkpoint
        self.writer = writer
        self.partition = partition
        self.budget_seconds = budget_seconds
        self.domain_label = domain_label
        self.clock = clock
        self.state = EngineState.IDLE
        self._findings = 0

    def _emit(self, finding: Finding) -> None:
        self.partition = self.writer.write(self.partition, finding)
        self._findings += 1

    def run_session(self) -> SessionReport:
        """
        Process queue entries until the queue is empty or the budget is spent.

        Raises:
            GraphUnavailable: the network or the token failed; the audit can
                be resumed once Graph answers again
        """
        if self.state not in (EngineState.IDLE, EngineState.PAUSED):
            raise RuntimeError(f"Cannot run a session from state {self.state.value}")

        self.state = EngineState.RUNNING
        self._findings = 0
        processed = 0
        started = self.clock()

        try:
            while True:
                if self.checkpoint.is_empty():
                    self.state = EngineState.COMPLETED
                    logger.info("Queue empty, audit complete.")
                    break

                if self.clock() - started > self.budget_seconds:
                    self.state = EngineState.PAUSED
                    logger.info(f"Time budget of {self.budget_seconds:.0f}s reached, pausing.")
                    break

                try:
                    entry = self.checkpoint.peek_front()
                except CorruptEntry as e:
                    logger.warning(f"Dropping corrupt queue entry: {e}")
                    self.checkpoint.discard_front()
                    continue
                if entry is None:
                    continue

                children = self._process(entry)
                self.checkpoint.set_value(PARTITION_KEY, self.partition.to_json())
                self.checkpoint.advance(children)
                processed += 1
        except GraphUnavailable as e:
            # Front entry stays queued; the page position must survive with it
            self.state = EngineState.FAILED
            logger.error(f"Microsoft Graph unavailable, stopping session: {e}")
            self.checkpoint.set_value(PARTITION_KEY, self.partition.to_json())
            raise
        except Exception:
            self.state = EngineState.FAILED
            raise

        return SessionReport(self.state, processed, self._findings, len(self.checkpoint))

    def _process(self, entry: QueueEntry) -> List[QueueEntry]:
        """Process one folder and its files; return entries for its subfolders."""
        try:
            node = self.tree_store.resolve(entry.node_id)
            current = normalize(self.tree_store.get_raw_grants(node.id))
        except GraphUnavailable:
            raise
        except NODE_ERRORS as e:
            logger.warning(f"Could not access folder {entry.path} (ID: {entry.node_id}), skipping: {e}")
            self._emit(Finding(entry.path, entry.url, "Folder (unreachable)",
                               f"ERROR: could not access folder. {e}"))
            return []

        logger.debug(f"Processing: {entry.path}")
        url = entry.url or node.url

        if not entry.is_root:
            finding = compare(entry.inherited, current, entry.path, url, "Folder", self.domain_label)
            if finding:
                self._emit(finding)

        try:
            children = self.tree_store.list_children(node.id)
        except GraphUnavailable:
            raise
        except NODE_ERRORS as e:
            logger.warning(f"Could not list children of {entry.path}: {e}")
            return []

        subfolders = []
        for child in children:
            child_path = f"{entry.path}/{child.name}"
            if child.kind == NodeKind.CONTAINER:
                subfolders.append(QueueEntry(child.id, child_path, child.url, current, False))
                continue
            self._diff_leaf(current, child, child_path)
        return subfolders

    def _diff_leaf(self, parent: PermissionSet, child, child_path: str) -> None:
        try:
            child_set = normalize(self.tree_store.get_raw_grants(child.id))
        except GraphUnavailable:
            raise
        except NODE_ERRORS as e:
            logger.warning(f"Error reading permissions of file {child_path}: {e}")
            self._emit(Finding(child_path, child.url, "File (unreadable)",
                               f"ERROR reading permissions: {e}"))
            return
        finding = compare(parent, child_set, child_path, child.url, "File", self.domain_label)
        if finding:
            self._emit(finding)
