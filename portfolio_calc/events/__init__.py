"""
Event-sourced audit log for calculations.

Modules
-------
store    : EventStore contract, InMemoryEventStore, SqliteEventStore.
pipeline : CalculationPipeline — step-wise emitter for the
           CALC_STARTED → INPUTS_CAPTURED → SCORES_COMPUTED → CALC_COMPLETED
           sequence.
replay   : Re-run a recorded calculation from its INPUTS_CAPTURED event and
           compare with SCORES_COMPUTED.
"""
