"""
Tests package - Unit test suite for the Stack manager.

Contains:
- unit/: Unit tests for individual components
- utils/: In-memory Kubernetes API fake shared by the unit tests
"""
