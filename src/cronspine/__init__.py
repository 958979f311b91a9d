"""cronspine -- persistent multi-agent task scheduler.

Independent agents share one relational datastore (SQLite or PostgreSQL)
that records which tasks exist, when each instance is due and which agent
currently owns it. Agents claim due work with row locking, run it through
registered handlers and reschedule it, with no central coordinator.

Packages::

    cronspine.core        errors, result, logging, dialects, connections, schema
    cronspine.execution   handler registry, builtin handlers, executor
    cronspine.scheduling  claim selector, state machine, recovery, events, agent
    cronspine.cli         Typer command-line interface
"""

__version__ = "1.0.0"
