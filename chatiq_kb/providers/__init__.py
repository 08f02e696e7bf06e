"""Concrete adapters for the interfaces in :mod:`chatiq_kb.interfaces`."""
