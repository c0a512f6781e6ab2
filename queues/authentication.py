"""
Token authentication for desk and display clients.

Kept in its own module so REST framework can import it from settings
without pulling in any view code.
"""
from __future__ import annotations

from rest_framework import authentication


class TokenAuthentication(authentication.TokenAuthentication):
    """DRF token authentication using the ``Token`` keyword.

    Waiting-room displays use long-lived tokens issued from the admin site.
    """

    keyword = 'Token'
