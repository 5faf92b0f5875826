"""Shipyard core: ledger, stage machine, publisher, renderer, applier, orchestrator."""
