"""Money and date helpers (import the submodules directly)."""
