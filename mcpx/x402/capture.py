"""
mcpx Response Capture
Buffers a downstream ASGI response so the payment layer decides what is sent
"""

import logging
from typing import Dict, List, MutableMapping, Any

from starlette.types import Message, Send

logger = logging.getLogger(__name__)


class ResponseAlreadyReplayed(RuntimeError):
    """Raised when a capture is replayed or written to after replay"""


class ResponseCapture:
    """
    Two-phase response builder

    Capture phase: send() records every http.response.start and
    http.response.body message in order, nothing reaches the real sink.
    Replay phase: replay() emits the recorded messages verbatim to the real
    send, with headers from set_header() merged into the start message.
    discard() drops everything when the payment layer answers by itself.
    """

    def __init__(self):
        self.messages: List[Message] = []
        self.injected_headers: Dict[str, str] = {}
        self.replayed = False

    @property
    def started(self) -> bool:
        """A downstream handler has begun writing a response"""
        return any(m['type'] == 'http.response.start' for m in self.messages)

    @property
    def completed(self) -> bool:
        """The terminal body message has been captured"""
        return any(
            m['type'] == 'http.response.body' and not m.get('more_body', False)
            for m in self.messages
        )

    @property
    def status_code(self):
        for message in self.messages:
            if message['type'] == 'http.response.start':
                return message['status']
        return None

    async def send(self, message: MutableMapping[str, Any]) -> None:
        if self.replayed:
            raise ResponseAlreadyReplayed("Response capture already replayed")
        if self.completed and message['type'].startswith('http.response.'):
            logger.warning(f"Ignoring {message['type']} after response end")
            return
        self.messages.append(dict(message))

    def set_header(self, name: str, value: str) -> None:
        """Inject or overwrite a response header applied at replay time"""
        self.injected_headers[name.lower()] = value

    def discard(self) -> None:
        if self.messages:
            logger.debug(f"Discarding {len(self.messages)} buffered response messages")
        self.messages = []
        self.injected_headers = {}

    def _merge_headers(self, message: Message) -> Message:
        if not self.injected_headers:
            return message

        injected = {name.encode('latin-1'): value for name, value in self.injected_headers.items()}
        headers = [
            (name, value) for name, value in message.get('headers', [])
            if name.lower() not in injected
        ]
        headers.extend((name, value.encode('latin-1')) for name, value in injected.items())
        return {**message, 'headers': headers}

    async def replay(self, send: Send) -> None:
        """Write the captured response to the real sink, exactly once"""
        if self.replayed:
            raise ResponseAlreadyReplayed("Response capture already replayed")
        self.replayed = True

        for message in self.messages:
            if message['type'] == 'http.response.start':
                message = self._merge_headers(message)
            await send(message)
