# session_auth/auth/__init__.py
"""
Authentication modules for Session Auth.

This package contains:
- identity.py: Canonical authenticated identity model (auth-provider agnostic)
- cognito.py: Cognito ID token verification against the pool JWKS
- session_tokens.py: Session credential codec (the value in the session cookie)
- credentials.py: Credential verifier (mint / verify / revoke)
"""
from session_auth.auth.identity import Identity

__all__ = ["Identity"]
