from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Literal
from uuid import uuid4

from sitewatch.capture.frames import CapturedImage
from sitewatch.errors import AnalysisError
from sitewatch.util.time import now_utc_iso

from .base import AnalysisClient

DESCRIBE_PROMPT = """Describe this construction site image for a safety officer.

**Overall Impression:**
[Brief summary of what the image shows]

**Key Elements:**
* Workers, equipment and materials present
* Protective equipment worn or missing

**Visible Hazards:**
* Anything unsafe, or "None observed"

**In Summary:**
[A concise conclusion]"""

FOLLOW_UP_PROMPT = """You are a helpful assistant analyzing a construction site image.
The user has already seen this description of the image:

{description}

Previous questions and answers:
{history}

User's follow-up question: {question}

Answer the question based on what you can see in the image."""


@dataclass
class ChatTurn:
    role: Literal["user", "model"]
    content: str
    created_at: str = field(default_factory=now_utc_iso)


class ImageChatSession:
    """Conversation about one captured image; follow-ups always resend that image."""

    def __init__(self, client: AnalysisClient, image: CapturedImage, camera_name: str | None = None) -> None:
        self.id = f"chat-{uuid4().hex[:12]}"
        self.client = client
        self.image = image
        self.camera_name = camera_name
        self.description: str | None = None
        self.turns: list[ChatTurn] = []
        self._lock = threading.Lock()

    def describe(self, timeout: float | None = None) -> str:
        description = self.client.analyze(self.image, DESCRIBE_PROMPT, timeout=timeout)
        with self._lock:
            self.description = description
            self.turns = [ChatTurn(role="model", content=description)]
        return description

    def ask(self, question: str, timeout: float | None = None) -> str:
        question = question.strip()
        if not question:
            raise ValueError("Question cannot be empty")
        with self._lock:
            if self.description is None:
                raise AnalysisError("No image has been analyzed yet. Please analyze an image first.")
            history = "\n".join(f"{turn.role}: {turn.content}" for turn in self.turns[1:]) or "(none)"
            prompt = FOLLOW_UP_PROMPT.format(description=self.description, history=history, question=question)
        answer = self.client.analyze(self.image, prompt, timeout=timeout)
        with self._lock:
            self.turns.append(ChatTurn(role="user", content=question))
            self.turns.append(ChatTurn(role="model", content=answer))
        return answer

    def history(self) -> list[dict[str, str]]:
        with self._lock:
            return [{"role": t.role, "content": t.content, "created_at": t.created_at} for t in self.turns]


class ChatSessionRegistry:
    """Explicit owner of chat sessions; replaces any process-wide "current context"."""

    def __init__(self, client: AnalysisClient, max_sessions: int = 20) -> None:
        self.client = client
        self.max_sessions = max(1, max_sessions)
        self._sessions: dict[str, ImageChatSession] = {}
        self._lock = threading.Lock()

    def open(self, image: CapturedImage, camera_name: str | None = None) -> ImageChatSession:
        session = ImageChatSession(self.client, image, camera_name=camera_name)
        with self._lock:
            self._sessions[session.id] = session
            while len(self._sessions) > self.max_sessions:
                oldest = next(iter(self._sessions))
                self._sessions.pop(oldest)
        return session

    def get(self, session_id: str) -> ImageChatSession | None:
        with self._lock:
            return self._sessions.get(session_id)

    def close(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None
