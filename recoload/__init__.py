"""
Staged load generator for the recommendation stack.

Drives the event ingestion service and the recommendation API with a
ramping number of virtual users, checks every response, and gates the
run on latency and error-rate thresholds.

Key Concepts Demonstrated:
- Staged concurrency ramp as a pure function of elapsed time
- Per-iteration request scripts with reproducible randomness
- Thread-safe shared metrics injected into every virtual user
- Threshold gates with CI-friendly exit codes
"""

__version__ = "0.1.0"
