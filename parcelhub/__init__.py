"""
parcelhub - carrier orchestration core

Uniform carrier adapters, concurrent rate aggregation with per-carrier
circuit breakers, and priority-ordered automation rules.
"""
__version__ = "1.0.0"
