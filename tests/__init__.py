"""
placemap test suite.

TEST AXIOMS:
============
1. Fixtures are explicit: hand-written events, lines and shards
2. Failures are asserted by ErrorCode, not by message text
3. Nothing touches the network; shards are in-memory or on tmp_path
"""
