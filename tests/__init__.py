"""
bufferqueue test suite.

- Level queue, priority queue and scheduler tests
- Event manager tests
- HTTP transport and exception tests
"""
