"""Authentication primitives.

Learn: Two pieces live here:
1. JWT issue/verify (access + refresh tokens, subject = username)
2. bcrypt password hashing for profiles

The WebSocket hub only needs verify_token_ignore_expiration().
"""
