"""
Criteria-driven asset scoring.

Modules
-------
evaluator : evaluate_criterion() — one rule against one asset's fundamentals.
            Pure; failures are reported in-band, never raised.
engine    : calculate_scores() — criteria-outer / assets-inner scoring loop,
            plus calculate_scores_with_events() which records the four-event
            audit sequence around it.
preview   : preview_scores() and compare_criteria_sets() — read-only views
            over calculate_scores for trying out criteria changes.
"""
