from typing import Dict, Any, Optional
import structlog

from convo_agent.domain.models.messages import TurnContext
from .memory_fork import ScopedMemory
from .storage.memory_storage import Storage

logger = structlog.get_logger(__name__)

INPUT_VARIABLE = "temp.input"
INPUT_FILES_VARIABLE = "temp.input_files"


class TurnState(ScopedMemory):
    """Durable state for a single turn.

    The ``conversation`` and ``user`` scopes are loaded from and saved to
    storage; ``temp`` only lives for the current turn.
    """

    def __init__(
        self,
        conversation: Optional[Dict[str, Any]] = None,
        user: Optional[Dict[str, Any]] = None,
        temp: Optional[Dict[str, Any]] = None,
        storage: Optional[Storage] = None,
        storage_keys: Optional[Dict[str, str]] = None,
    ):
        super().__init__({
            "conversation": conversation or {},
            "user": user or {},
            "temp": temp or {},
        })
        self._storage = storage
        self._storage_keys = storage_keys or {}

    @property
    def conversation(self) -> Dict[str, Any]:
        return self._scopes["conversation"]

    @property
    def user(self) -> Dict[str, Any]:
        return self._scopes["user"]

    @property
    def temp(self) -> Dict[str, Any]:
        return self._scopes["temp"]

    @staticmethod
    def storage_keys_for(context: TurnContext) -> Dict[str, str]:
        return {
            "conversation": f"conversation/{context.conversation_id}",
            "user": f"user/{context.user_id}",
        }

    @classmethod
    async def load(cls, context: TurnContext, storage: Optional[Storage] = None) -> "TurnState":
        """Load persisted scopes and seed temp with the inbound input"""

        keys = cls.storage_keys_for(context)
        items: Dict[str, Any] = {}
        if storage is not None:
            items = await storage.read(list(keys.values()))

        state = cls(
            conversation=items.get(keys["conversation"]),
            user=items.get(keys["user"]),
            storage=storage,
            storage_keys=keys,
        )
        state.set_value(INPUT_VARIABLE, context.text or "")
        state.set_value(INPUT_FILES_VARIABLE, list(context.attachments))

        logger.debug(
            "Turn state loaded",
            conversation_id=context.conversation_id,
            user_id=context.user_id,
            found=list(items.keys()),
        )
        return state

    async def save(self) -> None:
        """Persist the conversation and user scopes"""

        if self._storage is None or not self._storage_keys:
            return

        await self._storage.write({
            self._storage_keys["conversation"]: self.conversation,
            self._storage_keys["user"]: self.user,
        })

    async def delete_conversation_state(self) -> None:
        """Clear the conversation scope here and in storage"""

        self._scopes["conversation"] = {}
        if self._storage is not None and self._storage_keys:
            await self._storage.delete([self._storage_keys["conversation"]])
