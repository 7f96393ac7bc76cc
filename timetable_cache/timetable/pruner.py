"""
Retention pruning for a CacheStore: drop snapshots older than max_age_days, then keep only the
newest max_history_per_range snapshots per (subject, range_start, range_end).
Throttled to once per interval per process through the scheduler context.
"""
import logging
from datetime import timedelta

from sqlalchemy import delete, select

from timetable_cache.core.context import SchedulerContext
from timetable_cache.core.db import session_scope
from timetable_cache.timetable.service import CacheStore, bound_clause

logger = logging.getLogger(__name__)


class RetentionPruner:
    def __init__(
        self,
        store: CacheStore,
        context: SchedulerContext,
        max_age_days: int = 45,
        max_history_per_range: int = 2,
        interval_seconds: float = 6 * 60 * 60,
    ):
        self.store = store
        self.context = context
        self.max_age_days = max_age_days
        self.max_history_per_range = max_history_per_range
        self.interval_seconds = interval_seconds
        self.marker = f"prune:{store.model.__tablename__}"

    def tick(self) -> bool:
        """Prune if the throttle interval has elapsed. Returns True when a pass ran."""
        if not self.context.should_run(self.marker, self.interval_seconds):
            return False
        self.prune()
        return True

    def prune(self) -> None:
        """One best-effort pass; errors are logged, never raised."""
        model = self.store.model
        key_column = self.store.key_column
        cutoff = self.context.now() - timedelta(days=self.max_age_days)
        try:
            with session_scope() as session:
                expired = session.execute(delete(model).where(model.created_at < cutoff))
                removed = expired.rowcount or 0

                keys = session.execute(
                    select(key_column, model.range_start, model.range_end).distinct()
                ).all()
                for subject_key, range_start, range_end in keys:
                    where = (
                        key_column == subject_key,
                        bound_clause(model.range_start, range_start),
                        bound_clause(model.range_end, range_end),
                    )
                    surplus_ids = session.execute(
                        select(model.id)
                        .where(*where)
                        .order_by(model.created_at.desc(), model.id.desc())
                        .offset(self.max_history_per_range)
                    ).scalars().all()
                    if surplus_ids:
                        session.execute(delete(model).where(model.id.in_(surplus_ids)))
                        removed += len(surplus_ids)
            logger.info(f"Pruned {removed} {model.__tablename__} snapshot(s)")
        except Exception as e:
            logger.warning(f"{model.__tablename__} cleanup failed: {e}", exc_info=True)
