"""Rollwright terminal rendering: read-only views over registry and ledger.

Modules
-------
renderer
    ``DeploymentRenderer`` turns deployment results, registry listings,
    rollout history and drift reports into Rich renderables.
"""
