"""Test suite for sndiff.

Test organization:
- fixtures/: Synthetic count generators and test utilities
- unit/: Unit tests for individual modules and the end-to-end pipeline

Run tests with:
    pytest tests/
    pytest tests/unit/
    pytest tests/ -v --tb=short
"""
