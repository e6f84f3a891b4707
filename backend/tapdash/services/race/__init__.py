"""Race domain services: results, reconnection and timers.

This package contains the game logic that socket handlers and HTTP routes
call into, keeping transport concerns out of race mechanics.
"""
