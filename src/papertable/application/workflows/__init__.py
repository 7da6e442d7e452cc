from .batch_scheduler import BatchScheduler, BatchSummary
from .table_session import TableSession
from .task_planner import build_rows, page_rows, plan_extraction_tasks, plan_tasks

__all__ = [
    "BatchScheduler",
    "BatchSummary",
    "TableSession",
    "build_rows",
    "page_rows",
    "plan_extraction_tasks",
    "plan_tasks",
]
