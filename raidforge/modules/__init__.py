"""
Domain modules: catalog, loot, lockout, encounter and rewards.
"""
