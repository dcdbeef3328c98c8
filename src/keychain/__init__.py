"""Keychain — usage metering and plan-based quota enforcement."""

__version__ = "0.1.0"
