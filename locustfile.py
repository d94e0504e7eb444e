"""
Locust entrypoint for the recommendation-stack load test.

This is the file that the ``locust`` CLI discovers and loads.  It only
re-exports the user class and load shape defined in :mod:`recoload.host`;
the stage ramp and thresholds come from ``LOADTEST_PROFILE`` (or the
built-in defaults).

Usage examples::

    # Headless run with CSV output for the CI gate:
    BASE_URL=http://localhost:8080 API_URL=http://localhost:8081 \\
        locust -f locustfile.py --headless --csv results

    # Re-check the CSV against the same thresholds:
    recoload check-stats --stats results_stats.csv

    # Distributed: the master gates on the statistics its workers report.
    locust -f locustfile.py --headless --master --expect-workers 4
    locust -f locustfile.py --worker --master-host 127.0.0.1
"""

from __future__ import annotations

from recoload.host import RecommendationUser, StagedLoadShape

__all__ = ["RecommendationUser", "StagedLoadShape"]
