"""finance_recurring.db -- SQLAlchemy base classes and engine management."""
