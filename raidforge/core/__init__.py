"""
Core infrastructure layer for raidforge.

Purpose
-------
Infrastructure subsystems the domain modules are built on:

- Configuration (Config, ConfigManager)
- Logging (structured logging, LogContext)
- Database (DatabaseService over async SQLAlchemy)
- Entity store write path (WriteCoalescer, RedisBatchCommitter)
- Wiring (ApplicationContext, PeriodicTask)
- Infrastructure exceptions

Design Decisions
----------------
This package re-exports nothing. Import from the submodules directly so that
importing one subsystem never drags in the others (the logger reads Config,
and ConfigManager logs).
"""
