"""
raidforge: reward and progression core for a live multiplayer idle RPG.

Encounter catalog, loot generation, weekly lockouts, the encounter lifecycle
state machine, reward settlement and the coalesced write path to the entity
store. Components are built and wired by
`raidforge.core.infra.ApplicationContext`.
"""

__version__ = "0.1.0"
