"""Lead scoring backend test suite."""
