"""Validator Rug Tracker - commission, MEV and delinquency monitoring for Solana validators."""

__version__ = "0.1.0"
