"""cronspine.scheduling -- the claim-and-execute engine.

┌──────────────────────────────────────────────────────────────────────────┐
│  Agent.process(items)                                         agent.py   │
│    │                                                                     │
│    ├── SettingsRepository.refresh() → SchedulerConfig          config.py │
│    ├── HangRecovery.run()                                    recovery.py │
│    ├── ClaimSelector.active_claims() / claim()               selector.py │
│    │       priority_score / score_sql                        priority.py │
│    └── InstanceStateMachine.run()                               state.py │
│            ├── Executor.execute()             cronspine.execution        │
│            └── reschedule() → compute_next_run()              nextrun.py │
│                                   next_qualifying()          calendar.py │
│                                                                          │
│  EventLog / EventStream                             events.py, stream.py │
│  TaskRepository / InstanceRepository                       repository.py │
└──────────────────────────────────────────────────────────────────────────┘

The state machine, recovery and agent modules depend on
``cronspine.execution`` and are imported from their modules directly::

    from cronspine.scheduling.agent import Agent
"""

from cronspine.scheduling.calendar import next_qualifying, parse_day_list
from cronspine.scheduling.config import SchedulerConfig, SettingsRepository
from cronspine.scheduling.events import EventLog, EventType
from cronspine.scheduling.models import (
    ClaimedInstance,
    ClaimToken,
    InstanceKey,
    InstanceStatus,
    TaskDefinition,
    TaskInstance,
)
from cronspine.scheduling.nextrun import compute_next_run
from cronspine.scheduling.priority import priority_score
from cronspine.scheduling.repository import InstanceRepository, TaskRepository
from cronspine.scheduling.selector import ClaimSelector
from cronspine.scheduling.stream import EventStream, MemoryStream, SSEWriter

__all__ = [
    "ClaimSelector",
    "ClaimToken",
    "ClaimedInstance",
    "EventLog",
    "EventStream",
    "EventType",
    "InstanceKey",
    "InstanceRepository",
    "InstanceStatus",
    "MemoryStream",
    "SSEWriter",
    "SchedulerConfig",
    "SettingsRepository",
    "TaskDefinition",
    "TaskInstance",
    "TaskRepository",
    "compute_next_run",
    "next_qualifying",
    "parse_day_list",
    "priority_score",
]
