"""
raidforge Test Suite
====================

Test Organization
-----------------
- tests/unit/          : Fast unit tests with mocks and fakes (no external dependencies)
- tests/integration/   : Tests against a real SQLite lockout store via aiosqlite

Testing Philosophy
------------------
- Unit tests: fast, isolated, test game rules
- Integration tests: exercise the store-backed paths end to end
- Use pytest markers to categorize and selectively run tests
- Follow AAA pattern: Arrange, Act, Assert
"""
