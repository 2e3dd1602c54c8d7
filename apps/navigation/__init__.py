"""
Navigation application.

Declarative, capability-gated navigation tables per role and the filter
that turns evaluator decisions into a bounded, ordered surface.
"""
