"""Run monitor: pure read-only projection over the Run Ledger.

Modules
-------
projection
    ``RunProjection`` reads the ledger and produces frozen ``RunReport``
    models.  It never keeps state of its own.
renderer
    ``RunRenderer`` turns ``RunReport`` into Rich renderables, including a
    ``Rich.Live`` watch mode.
"""
