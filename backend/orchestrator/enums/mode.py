"""
Assistant mode enumeration.

Modes are orthogonal to session lifecycle:
- SessionState answers: "Is the live session up?"
- AssistantMode answers: "What is the assistant currently focused on?"

Only the mode tool call changes the mode. The HUD reads it.
"""

from __future__ import annotations

from enum import Enum


class AssistantMode(str, Enum):
    """
    Closed set of assistant modes the model may switch to.

    GENERAL:
        Default conversational assistance.

    HOMEWORK:
        Guided study help.

    GK_QUIZ:
        General-knowledge quiz, one question at a time.

    SCIENCE:
        Science lab discussion.
    """

    GENERAL = "GENERAL"
    HOMEWORK = "HOMEWORK"
    GK_QUIZ = "GK_QUIZ"
    SCIENCE = "SCIENCE"
