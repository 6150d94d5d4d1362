# ABOUTME: Utilities package initialization for the Scylla Cloud client
# ABOUTME: Contains the transport, endpoint client, error taxonomy, logging and safety guard

"""
Scylla Cloud Utilities Package

Shared utilities:
    - errors.py: Failure kinds and classification of HTTP/network errors
    - transport.py: Request execution with retry and envelope decoding
    - client.py: Typed Scylla Cloud API endpoints
    - safety.py: Read-only and destructive operation guards
    - logging.py: Structured logging, secret masking and audit trail
"""
