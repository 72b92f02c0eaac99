"""
portfolio_calc — deterministic portfolio calculation engine with an audit trail.

Criteria-driven asset scoring, stored-rate currency conversion, and
recommendation allocation, each wrapped in an event-sourced log that lets any
past calculation be replayed and verified.
"""

__version__ = "0.1.0"
