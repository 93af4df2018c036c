"""Shared fixtures: a scripted stand-in for the generative backend."""

import asyncio

import pytest


class ScriptedBackend:
    """Replays queued replies for ``generate_completion``/``generate_chat``.

    A queued item may be a string (returned), an exception (raised) or a
    ``(seconds, reply)`` tuple (sleep, then return). Exhausted queues
    return ``""``.
    """

    def __init__(self, completions=(), chats=()):
        self.completions = list(completions)
        self.chats = list(chats)
        self.completion_calls = []
        self.chat_calls = []
        self.bound = {}

    async def _next(self, queue):
        item = queue.pop(0) if queue else ""
        if isinstance(item, BaseException):
            raise item
        if isinstance(item, tuple):
            seconds, item = item
            await asyncio.sleep(seconds)
        return item

    async def generate_completion(self, prompt, streaming, options, run_id=None):
        self.completion_calls.append((prompt, streaming, options))
        return await self._next(self.completions)

    async def generate_chat(self, system_prompt, user_prompt, options, run_id=None):
        self.chat_calls.append((system_prompt, user_prompt, options))
        return await self._next(self.chats)

    def bind_token(self, run_id, token):
        self.bound[run_id] = token

    def release_token(self, run_id):
        self.bound.pop(run_id, None)


@pytest.fixture
def scripted_backend():
    return ScriptedBackend
