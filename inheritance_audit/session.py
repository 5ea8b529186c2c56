#!/usr/bin/env python3
"""
Session controller: start, resume and clear an inheritance audit.

start_audit() validates the root, writes the root summary, seeds the queue
with the root folder and runs the first session. resume_audit() runs one
more session from the persisted queue. When a session drains the queue the
persisted state is removed.
"""

import logging
import time
from typing import Callable, Dict, NamedTuple, Optional

from .checkpoint import CheckpointStore, QueueEntry
from .config_utils import AuditSettings
from .diff import summarize_root
from .errors import (
    AccessDenied,
    DriveMismatch,
    GraphApiError,
    NoActiveAudit,
    NotFound,
    RootUnavailable,
)
from .graph_store import NodeKind
from .permissions import normalize
from .report import CsvPageStore, PartitionState, ReportWriter
from .traversal import PARTITION_KEY, AuditEngine, EngineState, SessionReport

logger = logging.getLogger(__name__)

ACTIVE_KEY = "active"
ROOT_ID_KEY = "root_id"
ROOT_LABEL_KEY = "root_label"
DOMAIN_KEY = "domain"
DRIVE_ID_KEY = "drive_id"


class AuditOutcome(NamedTuple):
    report: SessionReport
    results_folder: str

    @property
    def completed(self) -> bool:
        return self.report.state == EngineState.COMPLETED


def _root_unavailable(error: Exception) -> RootUnavailable:
    if isinstance(error, AccessDenied):
        return RootUnavailable("forbidden", str(error))
    if isinstance(error, NotFound):
        return RootUnavailable("not_found", str(error))
    if isinstance(error, GraphApiError) and error.status_code == 401:
        return RootUnavailable("api_not_enabled", str(error))
    return RootUnavailable("generic", str(error))


def _writer(settings: AuditSettings) -> ReportWriter:
    return ReportWriter(CsvPageStore(settings.results_dir), settings.page_capacity)


def _run(settings: AuditSettings, tree_store, checkpoint: CheckpointStore, writer: ReportWriter,
         partition: PartitionState, domain: str, clock: Callable[[], float]) -> AuditOutcome:
    engine = AuditEngine(tree_store, checkpoint, writer, partition,
                         settings.session_budget_seconds, domain, clock)
    report = engine.run_session()
    if report.state == EngineState.COMPLETED:
        checkpoint.clear()
    return AuditOutcome(report, engine.partition.container_id)


def start_audit(settings: AuditSettings, tree_store, root_path: Optional[str] = None,
                clock: Callable[[], float] = time.monotonic) -> AuditOutcome:
    """
    Start a new audit below root_path (the drive root when None).

    Any previous audit state is discarded first.

    Raises:
        RootUnavailable: if the root cannot be opened; no queue is created
    """
    checkpoint = CheckpointStore(settings.state_dir)
    checkpoint.clear()

    try:
        root = tree_store.resolve_path(root_path)
        root_grants = tree_store.get_authoritative_root_grants(root.id)
        baseline = normalize(tree_store.get_raw_grants(root.id))
    except (AccessDenied, NotFound, GraphApiError) as e:
        raise _root_unavailable(e) from e

    if root.kind != NodeKind.CONTAINER:
        raise RootUnavailable("generic", f"'{root_path}' is not a folder")

    root_label = (root_path or "").strip("/") or (root.name if root.name != "root" else "OneDrive")
    domain = settings.organization_domain or tree_store.get_organization_domain()

    writer = _writer(settings)
    partition = writer.open_partition(root_label)
    for row in summarize_root(root_grants, root_label, root.url, domain):
        partition = writer.write(partition, row)

    checkpoint.initialize()
    checkpoint.set_value(ROOT_ID_KEY, root.id)
    checkpoint.set_value(ROOT_LABEL_KEY, root_label)
    checkpoint.set_value(DOMAIN_KEY, domain)
    checkpoint.set_value(DRIVE_ID_KEY, tree_store.drive_id or "")
    checkpoint.set_value(PARTITION_KEY, partition.to_json())
    checkpoint.enqueue(QueueEntry(root.id, root_label, root.url, baseline, True))
    checkpoint.set_value(ACTIVE_KEY, "1")
    logger.info(f"Audit started for '{root_label}' ({root.id})")

    return _run(settings, tree_store, checkpoint, writer, partition, domain, clock)


def resume_audit(settings: AuditSettings, tree_store,
                 clock: Callable[[], float] = time.monotonic) -> AuditOutcome:
    """
    Run one more session of the active audit.

    Raises:
        NoActiveAudit: if no audit has been started (or it was cleared)
        DriveMismatch: if tree_store points at another drive than the audit
    """
    checkpoint = CheckpointStore(settings.state_dir)
    if not checkpoint.is_active():
        raise NoActiveAudit("No active audit found. Start a new audit first.")

    audited_drive = checkpoint.get_value(DRIVE_ID_KEY, "")
    if (tree_store.drive_id or "") != audited_drive:
        raise DriveMismatch(
            f"The active audit walks drive '{audited_drive or 'me'}', "
            f"not '{tree_store.drive_id or 'me'}'."
        )

    writer = _writer(settings)
    root_label = checkpoint.get_value(ROOT_LABEL_KEY, "OneDrive")
    try:
        partition = PartitionState.from_json(checkpoint.get_value(PARTITION_KEY))
    except (TypeError, ValueError) as e:
        logger.warning(f"Report partition state lost ({e}), starting a new results folder")
        partition = writer.open_partition(root_label)

    domain = checkpoint.get_value(DOMAIN_KEY, "")
    return _run(settings, tree_store, checkpoint, writer, partition, domain, clock)


def clear_audit(settings: AuditSettings) -> bool:
    """Discard all persisted audit state. Returns True if there was any."""
    checkpoint = CheckpointStore(settings.state_dir)
    had_state = checkpoint.exists()
    checkpoint.clear()
    return had_state


def audit_status(settings: AuditSettings) -> Dict:
    """Summarize the persisted audit state without touching the queue."""
    checkpoint = CheckpointStore(settings.state_dir)
    if not checkpoint.is_active():
        return {"active": False, "remaining": 0, "root_label": None, "results_folder": None,
                "drive_id": None}

    results_folder = None
    payload = checkpoint.get_value(PARTITION_KEY)
    if payload:
        try:
            results_folder = PartitionState.from_json(payload).container_id
        except (TypeError, ValueError):
            results_folder = None
    return {
        "active": True,
        "remaining": len(checkpoint),
        "root_label": checkpoint.get_value(ROOT_LABEL_KEY),
        "results_folder": results_folder,
        "drive_id": checkpoint.get_value(DRIVE_ID_KEY) or None,
    }
