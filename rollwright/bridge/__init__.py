"""Bridge layer between Rollwright and the outside world.

Every external system sits behind a small Protocol so the core never
imports a concrete backend.

Modules
-------
registry
    ``HttpRegistryClient``: tag-to-digest lookups over the Registry HTTP API v2.
provisioning
    ``TerraformEngine``: plan/apply/refresh through the terraform CLI.
remote
    ``SshExecutor`` and ``LocalExecutor``: run argv on a target host.
process
    ``run_process``: subprocess execution with deadlines and cancellation.
workload
    ``DockerWorkloadDriver``: pull/stop/start expressed as docker commands.
health
    ``HttpHealthProbe``: one HTTP GET against a health endpoint.
simulated
    In-process stand-ins for all of the above, used by the demo and tests.
"""
