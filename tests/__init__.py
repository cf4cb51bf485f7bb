# NoteVault Test Suite
"""
Test suite including:
- Unit tests (layers, header codec, key derivation)
- Integration tests (factory + audit log)
- Security tests (wrong password, truncation, invalid inputs)

Run with: pytest
Coverage: coverage run -m pytest && coverage report
"""
