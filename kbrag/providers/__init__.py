"""Concrete backends behind the interfaces in ``kbrag.interfaces``."""
