"""Conversations with the document assistant.

Replies are grounded in the user's own documents: the question is run
through semantic search and the chat model answers from the matching
chunks, with the most recent messages as history.
"""

import time
from dataclasses import dataclass

from sqlalchemy import func, select

from docscan.documents.search import SearchResponse, SemanticSearch
from docscan.errors import ConfigError, ConversationNotFoundError, LLMError
from docscan.processing.llm import ChatModel
from docscan.storage.database import Database
from docscan.storage.models import (
    AIConversation,
    AIMessage,
    Document,
    DocumentAccessLog,
    utcnow,
)
from docscan.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_TITLE = "New Conversation"
MAX_LISTED_DOCUMENTS = 5

SYSTEM_PROMPT = (
    "You are a helpful assistant that answers questions about the user's "
    "scanned documents. Answer only from the numbered context passages. "
    "Cite passages by their number, e.g. [1]. If the context does not contain "
    "the answer, say that you could not find it in the documents."
)

NO_DOCUMENTS_REPLY = (
    "You don't have any processed documents yet. Upload a document and I can "
    "answer questions about it once processing finishes."
)


@dataclass
class AssistantReply:
    """Generated answer and the retrieval data behind it."""

    content: str
    model: str
    input_tokens: int | None = None
    output_tokens: int | None = None
    referenced_documents: list[str] | None = None
    retrieved_chunks: list[str] | None = None
    similarity_scores: list[float] | None = None


def build_context(results: SearchResponse) -> str:
    """Format retrieved chunks as numbered passages with their source file."""
    names = {doc.id: doc.original_filename for doc in results.documents}
    lines = []
    for number, match in enumerate(results.chunks, 1):
        source = names.get(match.document_id, match.document_id)
        lines.append(
            f"[{number}] ({source}, similarity {match.similarity:.2f})\n{match.content}"
        )
    return "\n\n".join(lines)


class ConversationService:
    """Stores conversations and messages and generates assistant replies.

    Args:
        db: Database session factory.
        search: Semantic search over the user's documents.
        chat: Chat model used for replies.
    """

    def __init__(self, db: Database, search: SemanticSearch, chat: ChatModel) -> None:
        self.db = db
        self.search = search
        self.chat = chat

    def list_conversations(self, user_id: str) -> list[AIConversation]:
        with self.db.session() as session:
            rows = session.scalars(
                select(AIConversation)
                .where(
                    AIConversation.user_id == user_id,
                    AIConversation.is_active.is_(True),
                )
                .order_by(
                    AIConversation.last_message_at.desc().nulls_last(),
                    AIConversation.created_at.desc(),
                )
            )
            return list(rows)

    def create_conversation(
        self, user_id: str, title: str | None = None
    ) -> AIConversation:
        with self.db.session() as session:
            conversation = AIConversation(
                user_id=user_id,
                title=title or DEFAULT_TITLE,
                system_prompt=SYSTEM_PROMPT,
                is_active=True,
                message_count=0,
            )
            session.add(conversation)
        logger.info("Created conversation %s for user %s", conversation.id, user_id)
        return conversation

    def get_conversation(self, conversation_id: str) -> AIConversation:
        """Fetch an active conversation.

        Raises:
            ConversationNotFoundError: If it does not exist or was deleted.
        """
        with self.db.session() as session:
            conversation = session.get(AIConversation, conversation_id)
            if conversation is None or not conversation.is_active:
                raise ConversationNotFoundError(
                    f"Conversation {conversation_id} not found"
                )
            return conversation

    def list_messages(self, conversation_id: str) -> list[AIMessage]:
        with self.db.session() as session:
            rows = session.scalars(
                select(AIMessage)
                .where(AIMessage.conversation_id == conversation_id)
                .order_by(AIMessage.created_at.asc())
            )
            return list(rows)

    def delete_conversation(self, conversation_id: str) -> None:
        """Hide a conversation; its messages are kept."""
        with self.db.session() as session:
            conversation = session.get(AIConversation, conversation_id)
            if conversation is None:
                raise ConversationNotFoundError(
                    f"Conversation {conversation_id} not found"
                )
            conversation.is_active = False
        logger.info("Deleted conversation %s", conversation_id)

    def _touch(self, conversation_id: str) -> None:
        with self.db.session() as session:
            conversation = session.get(AIConversation, conversation_id)
            count = session.scalar(
                select(func.count(AIMessage.id)).where(
                    AIMessage.conversation_id == conversation_id
                )
            )
            conversation.message_count = count or 0
            conversation.last_message_at = utcnow()

    def _history(self, conversation: AIConversation) -> list[dict[str, str]]:
        window = conversation.context_window_size or 0
        if window <= 0:
            return []
        messages = self.list_messages(conversation.id)
        return [{"role": m.role, "content": m.content} for m in messages[-window:]]

    def _list_documents_reply(self, user_id: str) -> AssistantReply:
        with self.db.session() as session:
            documents = list(
                session.scalars(
                    select(Document)
                    .where(Document.user_id == user_id)
                    .order_by(Document.uploaded_at.desc())
                    .limit(MAX_LISTED_DOCUMENTS)
                )
            )
        if not documents:
            return AssistantReply(content=NO_DOCUMENTS_REPLY, model="none")

        listing = "\n".join(
            f"- {doc.original_filename} ({doc.file_type})" for doc in documents
        )
        return AssistantReply(
            content=(
                "I couldn't find anything in your documents that answers this. "
                f"Your most recent documents are:\n\n{listing}\n\n"
                "Would you like details about any specific document?"
            ),
            model="none",
            referenced_documents=[doc.id for doc in documents],
        )

    def generate_reply(
        self, conversation: AIConversation, user_id: str, question: str
    ) -> AssistantReply:
        """Answer ``question`` from the user's documents."""
        results = self.search.search(question, user_id)
        if results.is_empty:
            return self._list_documents_reply(user_id)

        system = conversation.system_prompt or SYSTEM_PROMPT
        messages = [{"role": "system", "content": system}]
        # History already ends with the question being answered.
        history = self._history(conversation)
        messages.extend(history[:-1])
        messages.append(
            {
                "role": "user",
                "content": (
                    f"Context:\n{build_context(results)}\n\nQuestion: {question}"
                ),
            }
        )
        result = self.chat.complete(messages, max_tokens=1000, temperature=0.2)
        return AssistantReply(
            content=result.text,
            model=result.model,
            input_tokens=result.input_tokens,
            output_tokens=result.output_tokens,
            referenced_documents=[doc.id for doc in results.documents],
            retrieved_chunks=[match.content for match in results.chunks],
            similarity_scores=results.similarities,
        )

    def send_message(
        self, conversation_id: str, user_id: str, content: str
    ) -> tuple[AIMessage, AIMessage]:
        """Store a user message and the assistant's reply to it.

        Returns:
            The stored user message and assistant message.
        """
        if not content or not content.strip():
            raise ValueError("Message content is empty")
        conversation = self.get_conversation(conversation_id)

        with self.db.session() as session:
            user_message = AIMessage(
                conversation_id=conversation_id,
                user_id=user_id,
                role="user",
                content=content,
            )
            session.add(user_message)
        self._touch(conversation_id)

        start = time.time()
        try:
            reply = self.generate_reply(conversation, user_id, content)
        except (LLMError, ConfigError) as exc:
            logger.error("Reply generation failed for %s: %s", conversation_id, exc)
            reply = AssistantReply(
                content="Sorry, I couldn't generate an answer right now. Please try again.",
                model="none",
            )
        elapsed_ms = int((time.time() - start) * 1000)

        with self.db.session() as session:
            assistant_message = AIMessage(
                conversation_id=conversation_id,
                user_id=user_id,
                role="assistant",
                content=reply.content,
                model_used=reply.model,
                input_tokens=reply.input_tokens,
                output_tokens=reply.output_tokens,
                processing_time_ms=elapsed_ms,
                referenced_documents=reply.referenced_documents or [],
                retrieved_chunks=reply.retrieved_chunks or [],
                similarity_scores=reply.similarity_scores or [],
            )
            session.add(assistant_message)
            session.flush()
            if reply.retrieved_chunks:
                for document_id in reply.referenced_documents or []:
                    session.add(
                        DocumentAccessLog(
                            user_id=user_id,
                            document_id=document_id,
                            conversation_id=conversation_id,
                            message_id=assistant_message.id,
                            access_type="ai_reference",
                            query_used=content,
                        )
                    )
        self._touch(conversation_id)
        return user_message, assistant_message
