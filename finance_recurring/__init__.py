"""
finance_recurring -- Recurring transaction scheduling and catch-up engine.

Turns declarative recurrence rules ("500 expense, monthly, from Jan 1")
and savings auto-deduct instruments into concrete ledger entries, once
per due occurrence, no matter how long the engine was not run.

Architecture:
    domain/    pure types, occurrence generation, validation, clock (ZERO I/O)
    stores/    store protocols + in-memory, file and SQL implementations
    models/    SQLAlchemy ORM models backing the SQL stores
    db/        engine / session management
    services/  gating check, rule processor, savings processor
    orchestrator.py  batch entry point (run_batch / reset / upcoming)

Invariants:
    - A rule's watermark only ever moves forward and is always a date
      previously produced by the occurrence generator.
    - Occurrence generation is pure; the same inputs give the same dates.
    - Savings accumulated value is derived from applied occurrences.
    - Clock injection (no date.today() calls outside SystemClock).
"""

__version__ = "0.1.0"
