"""
Pelangi Test Suite
==================

Test Organization
-----------------
- tests/unit/          : Fast tests with mocked infrastructure
- tests/integration/   : Tests against PostgreSQL via testcontainers

Follow the AAA pattern: Arrange, Act, Assert.
"""
