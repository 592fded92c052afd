"""Workflow rules: configuration, errors, permission policy, stages and the transition gate.

Modules are imported directly (``from workflow.gate import TransitionGate``);
this package exports nothing so the record models can depend on
``workflow.config`` without import cycles.
"""
