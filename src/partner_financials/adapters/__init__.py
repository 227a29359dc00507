"""Infrastructure adapters: SQLAlchemy repositories, Stripe transfers, notifier."""
