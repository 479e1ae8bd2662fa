"""
stack_orchestrator - dependency-ordered deployment of infrastructure layers.

Layers are verified, deployed, and their outputs recorded in dependency
order; a failure rolls back what the run created.
"""

__version__ = "1.0.0"
