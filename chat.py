"""
chat.py

The conversation with the meditation guide. The transcript only ever grows:
messages are appended in the order they happen and the whole transcript is
replayed to the model as history on the next turn. Clearing starts a new
transcript; a reply still on its way for the old one is dropped.
"""

import logging
import threading

from models import MODEL_ROLE, USER_ROLE, ChatMessage

WELCOME_MESSAGE = "Hello. I am your mindfulness companion. How are you feeling today?"
FALLBACK_CHAT_REPLY = "I'm having trouble connecting. Please try again."


class ChatSession:
    """Ordered chat transcript with at most one turn in flight."""

    def __init__(self, client):
        self.client = client
        self._messages = []
        self._lock = threading.Lock()
        self._busy = False
        self._generation = 0

    @property
    def messages(self):
        return tuple(self._messages)

    @property
    def is_busy(self) -> bool:
        return self._busy

    def send(self, text: str):
        """
        Sends one user message and returns the guide's reply.

        Returns None when a previous turn is still waiting for its reply, or
        when the transcript was cleared before the reply arrived.
        Raises ChatFailed when the model call fails; the user message stays
        in the transcript, nothing is appended in place of the reply.
        """
        if not text or not text.strip():
            raise ValueError("Message must not be empty.")

        with self._lock:
            if self._busy:
                logging.warning("Still waiting for the guide's previous reply.")
                return None
            self._busy = True
            generation = self._generation
            history = tuple(self._messages)
            self._messages.append(ChatMessage(role=USER_ROLE, text=text))

        try:
            reply_text = self.client.chat(history, text)
            reply = ChatMessage(role=MODEL_ROLE, text=reply_text)
            with self._lock:
                if generation != self._generation:
                    logging.info("Chat was cleared while waiting. Dropping the reply.")
                    return None
                self._messages.append(reply)
            return reply
        finally:
            self._busy = False

    def clear(self):
        with self._lock:
            self._generation += 1
            self._messages = []
