"""Common deployment utilities.

Provides logging, configuration, exceptions and the per-region AWS context
shared by the artifact builder, reconciler and orchestrator.
"""
