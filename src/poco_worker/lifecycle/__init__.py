"""Task lifecycle engine: local queue, registry reconciler and executor."""

from poco_worker.lifecycle.executor import Executor, PipelineOutcome, ScanSummary
from poco_worker.lifecycle.loop import LoopState, PollingLoop
from poco_worker.lifecycle.notifier import CompletionNotifier, RegistryCompletionNotifier
from poco_worker.lifecycle.reconciler import ReconcileSummary, Reconciler
from poco_worker.lifecycle.records import FileRecordStore, MemoryRecordStore, RecordStore
from poco_worker.lifecycle.task_store import TaskStore

__all__ = [
    "CompletionNotifier",
    "Executor",
    "FileRecordStore",
    "LoopState",
    "MemoryRecordStore",
    "PipelineOutcome",
    "PollingLoop",
    "ReconcileSummary",
    "Reconciler",
    "RecordStore",
    "RegistryCompletionNotifier",
    "ScanSummary",
    "TaskStore",
]
