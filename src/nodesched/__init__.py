"""
node-scheduler - recurring task scheduler for servers managed by node agents.

Packages:
    nodesched.core        Errors, outcomes, models, protocols, schema,
                          logging and settings
    nodesched.scheduling  Recurrence, repositories, executor, runner,
                          driver, throttle and health
    nodesched.agent       HTTP client for node agents
    nodesched.cli         ``nodesched`` command line
"""

__version__ = "1.0.0"
