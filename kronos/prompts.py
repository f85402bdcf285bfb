"""User prompts and extraction of learnings from agent output."""

from __future__ import annotations

import re
import sqlite3

from kronos.database import StoreError, parse_time, utc_now
from kronos.models import UserPrompt

_LEARNING_HEADER = re.compile(
    r"^#{2,3}\s+(?:Key\s+Learnings?|Learnings?|Aprendizajes(?:\s+Clave)?):?\s*$",
    re.IGNORECASE | re.MULTILINE,
)
_NEXT_HEADER = re.compile(r"^#{1,3}\s+", re.MULTILINE)
_ITEM = re.compile(r"^\s*(?:\d+[.)]\s+|[-*]\s+)(.+)$", re.MULTILINE)

_MIN_LENGTH = 20
_MIN_WORDS = 4


def extract_learnings(text: str) -> list[str]:
    """List items under a "Key Learnings" style header, filtered and de-duplicated."""
    header = _LEARNING_HEADER.search(text)
    if header is None:
        return []
    body = text[header.end():]
    following = _NEXT_HEADER.search(body)
    if following is not None:
        body = body[: following.start()]

    results: list[str] = []
    seen: set[str] = set()
    for line in body.split("\n"):
        item = _ITEM.search(line)
        if item is None:
            continue
        content = item.group(1).strip()
        if len(content.encode("utf-8")) < _MIN_LENGTH or len(content.split()) < _MIN_WORDS:
            continue
        key = content.lower()
        if key in seen:
            continue
        seen.add(key)
        results.append(content)
    return results


class PromptsMixin:
    """Prompt operations for a migrated Database."""

    def save_prompt(self, session_id: str, project: str, content: str) -> None:
        """Record a user prompt; empty content or project is ignored."""
        if not content or not project:
            return
        try:
            self._execute(
                "INSERT INTO user_prompts(session_id, content, project, created_at) "
                "VALUES (?, ?, ?, ?)",
                (session_id or None, content, project, utc_now()),
            )
        except sqlite3.Error as exc:
            raise StoreError(f"save prompt: {exc}") from exc

    def delete_prompt(self, prompt_id: int) -> None:
        """Soft-delete a prompt."""
        try:
            self._execute(
                "UPDATE user_prompts SET deleted_at = ? WHERE id = ? AND deleted_at IS NULL",
                (utc_now(), prompt_id),
            )
        except sqlite3.Error as exc:
            raise StoreError(f"delete prompt: {exc}") from exc

    def list_prompts(self, project: str, limit: int = 10) -> list[UserPrompt]:
        """Newest live prompts of a project."""
        if limit <= 0:
            limit = 10
        try:
            rows = self._fetch_all(
                "SELECT id, session_id, content, project, created_at FROM user_prompts "
                "WHERE project = ? AND deleted_at IS NULL ORDER BY created_at DESC LIMIT ?",
                (project, limit),
            )
        except sqlite3.Error as exc:
            raise StoreError(f"list prompts: {exc}") from exc
        return [
            UserPrompt(
                id=int(row["id"]),
                session_id=row["session_id"] or "",
                content=row["content"],
                project=row["project"],
                created_at=parse_time(row["created_at"]),
            )
            for row in rows
        ]