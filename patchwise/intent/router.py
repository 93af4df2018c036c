"""
Message router — decides how one user message is handled.

Must be called before any generative work. Ambiguous messages fall back
to chat; a single explicit edit target is never upgraded to a multi-file
edit.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Literal, Optional, Union

from .file_intent import (
    MULTI_FILE_INDICATORS, FileActionIntent, RouteContext,
    classify_file_action_intent, implies_multi_file,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FileOpenRoute:
    target_path: str
    action: Literal["file_open"] = field(default="file_open", init=False)


@dataclass(frozen=True)
class FileEditRoute:
    targets: List[str]
    instructions: str
    action: Literal["file_edit"] = field(default="file_edit", init=False)


@dataclass(frozen=True)
class FileEditAutoSearchRoute:
    instructions: str
    action: Literal["file_edit_auto_search"] = field(
        default="file_edit_auto_search", init=False)


@dataclass(frozen=True)
class MultiFileEditRoute:
    instructions: str
    target_hints: Optional[List[str]] = None
    action: Literal["multi_file_edit"] = field(default="multi_file_edit", init=False)


@dataclass(frozen=True)
class ChatRoute:
    action: Literal["chat"] = field(default="chat", init=False)


RouteDecision = Union[
    FileOpenRoute, FileEditRoute, FileEditAutoSearchRoute, MultiFileEditRoute, ChatRoute,
]


def route(message: str, context: Optional[RouteContext] = None,
          intent: Optional[FileActionIntent] = None) -> RouteDecision:
    """Route *message*; rules are evaluated in priority order."""
    intent = intent or classify_file_action_intent(message, context)
    paths = intent.paths
    multi = implies_multi_file(message)

    if intent.intent_type == "file_edit_search":
        logger.info("[Router] edit without a named file -> auto search")
        return FileEditAutoSearchRoute(instructions=intent.instructions or message.strip())

    if intent.intent_type == "none":
        if multi:
            logger.info("[Router] multi-file phrase, no explicit targets")
            return MultiFileEditRoute(instructions=message.strip())
        logger.info("[Router] no file intent, fallback to chat")
        return ChatRoute()

    logger.info("[Router] %s targets=%s instructions=%s",
                intent.intent_type, paths, intent.instructions or "(none)")

    if intent.intent_type == "file_open" and paths:
        return FileOpenRoute(target_path=paths[0])

    if intent.intent_type == "file_edit" and len(paths) > 1:
        return MultiFileEditRoute(instructions=intent.instructions or message.strip(),
                                  target_hints=paths)

    if intent.intent_type == "file_edit" and len(paths) == 1:
        return FileEditRoute(targets=paths, instructions=intent.instructions)

    if multi:
        return MultiFileEditRoute(instructions=intent.instructions or message.strip(),
                                  target_hints=paths or None)

    return ChatRoute()


__all__ = [
    "MULTI_FILE_INDICATORS", "implies_multi_file", "route", "RouteDecision",
    "FileOpenRoute", "FileEditRoute", "FileEditAutoSearchRoute",
    "MultiFileEditRoute", "ChatRoute",
]
