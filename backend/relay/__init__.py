"""Reflex challenge relay: token-authenticated WebSocket side-channel for the RPG bot."""
