"""
Runtime package: running instances with their event queue, history,
context handling and subscribers.
"""
