"""RTDB Profiler — run the database profiler, parse its output, ship the results.

Pipeline: Scheduler → Orchestrator → CommandRunner → ResultParser → Sinks
"""

__version__ = "0.3.0"
