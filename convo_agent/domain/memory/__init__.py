# This module handles turn memory

#  +---------------------+
# |     TurnState        |   (Durable, loaded from storage)
# |---------------------|
# | user.*              |   persisted per user
# | conversation.*      |   persisted per conversation
# | temp.*              |   discarded at turn end
# +---------------------+
#          |
#          v
# +------------------------------+
# |          MemoryFork          |   (Copy-on-write overlay for one pass)
# |------------------------------|
# | history, variables, outputs  |
# | merged back on success only  |
# +------------------------------+
#         |
#         v
#   [prompt / model / tool calls]

from .memory_fork import Memory, MemoryFork, parse_memory_path
from .turn_state import TurnState

__all__ = ["Memory", "MemoryFork", "TurnState", "parse_memory_path"]
