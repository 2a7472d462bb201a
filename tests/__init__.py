"""
Test suite for the business-plan load test.

This package contains:
- unit/: fast tests for config, metrics, decoding, steps, flow and reports
"""
