import logging

logger = logging.getLogger(__name__)


class ChatService:
    """
    Chat collaborator. The default implementation only records the
    enrollment; a real chat backend overrides add_participant_to_event_chat.
    """

    def add_participant_to_event_chat(self, user_id: str, event_id: str) -> None:
        logger.info("User %s enrolled in event %s chat", user_id, event_id)


chat_service = ChatService()


def get_chat_service() -> ChatService:
    return chat_service
