"""
Integration tests for instance coordination.

These tests bind real local sockets and spawn real child processes to check
the lock, focus and termination paths end to end.
"""
