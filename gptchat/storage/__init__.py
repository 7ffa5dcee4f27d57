from gptchat.storage.catalog import (
    ConversationCatalog,
    ConversationNotFound,
    PersistenceError,
    SerializedConversation,
)

__all__ = ["ConversationCatalog", "ConversationNotFound", "PersistenceError", "SerializedConversation"]
