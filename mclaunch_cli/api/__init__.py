"""
Remote Services Layer.

This package handles all communication with the Microsoft identity platform,
Xbox Live, Minecraft services and Mojang's metadata hosts.
"""

from .auth import AuthFlow, AuthState
from .client import ServicesClient
from .login import CodeReceiver, LocalRedirectReceiver, PromptReceiver

__all__ = [
    "AuthFlow",
    "AuthState",
    "CodeReceiver",
    "LocalRedirectReceiver",
    "PromptReceiver",
    "ServicesClient",
]
