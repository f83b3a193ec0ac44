"""
mclaunch-cli: a command-line launcher that prepares Minecraft for execution.

Authenticates the player through the Microsoft / Xbox Live / Minecraft services
chain and materializes a verified local copy of a game version.
"""

__version__ = "0.4.0"
