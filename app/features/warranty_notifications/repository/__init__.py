from .deadline_repository import (
    DeadlineRecordStore,
    DeadlineStoreError,
    PostgresDeadlineRepository,
)

__all__ = ["DeadlineRecordStore", "DeadlineStoreError", "PostgresDeadlineRepository"]
