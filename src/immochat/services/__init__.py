"""
Domain services: identities, sessions, one-time codes, email and audit
"""
