"""
Integration tests for the load generator.

Components are wired together exactly as in a real run, with only the
HTTP session replaced by :class:`~tests.fakes.FakeSession`.
"""
