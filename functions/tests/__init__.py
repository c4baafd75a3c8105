"""
Test Suite for the ChromaFlow Fabrication Tracker

This package contains tests organized by category:
- unit/: Unit tests for individual modules
- integration/: Integration tests for the HTTP function and the full
  controller → bridge → store path
- conftest.py: Shared pytest fixtures and configuration
"""
