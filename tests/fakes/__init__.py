# =============================================================================
# File: tests/fakes/__init__.py
# Description: In-memory fakes for the messaging ports
# =============================================================================
