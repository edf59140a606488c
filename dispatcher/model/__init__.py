from dispatcher.model.dispatcher import (
    JobDescriptor,
    MissedTask,
    ScheduledTask,
    SchedulerConfig,
    TaskStatus,
)

__all__ = ["JobDescriptor", "MissedTask", "ScheduledTask", "SchedulerConfig", "TaskStatus"]
