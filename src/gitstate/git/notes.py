"""Commit metadata stored under a ``refs/notes/*`` namespace.

Notes are JSON documents attached to commits with ``git notes``. The
store does not interpret them: any value pydantic can serialize may be
written, and it is read back either as plain JSON data or validated into
a caller-supplied type (a pydantic model, dataclass, TypedDict, ...).

``None`` is reserved for "no note", so it cannot be stored.
"""

from __future__ import annotations

import json
from typing import Any, TypeVar, overload

from pydantic import TypeAdapter, ValidationError
from pydantic_core import PydanticSerializationError, to_json

from gitstate.exceptions import DecodeError, EncodeError, GitError
from gitstate.git.client import GitClient
from gitstate.logging import get_logger

__all__ = ["NoteStore", "decode_note", "encode_note"]

logger = get_logger(__name__)

T = TypeVar("T")

#: stderr emitted by ``git notes show`` for a commit without a note
_NO_NOTE = "no note found for object"


def encode_note(note: Any) -> str:
    """Serialize ``note`` to compact JSON.

    Raises:
        EncodeError: If ``note`` is None or not serializable.
    """
    if note is None:
        raise EncodeError("cannot store None as a note")
    try:
        return to_json(note).decode("utf-8")
    except PydanticSerializationError as e:
        raise EncodeError(f"note is not serializable: {e}") from e


@overload
def decode_note(text: str, model: type[T]) -> T: ...
@overload
def decode_note(text: str, model: None = None) -> Any: ...
def decode_note(text: str, model: type[T] | None = None) -> T | Any:
    """Parse a stored note, optionally validating it into ``model``.

    Raises:
        DecodeError: If the note is not JSON or does not fit ``model``.
    """
    try:
        if model is None:
            return json.loads(text)
        return TypeAdapter(model).validate_json(text)
    except (json.JSONDecodeError, ValidationError) as e:
        raise DecodeError(f"malformed note: {e}") from e


class NoteStore:
    """Read and write notes for one notes ref.

    Args:
        client: Git client rooted at the repository holding the notes.
        notes_ref: Short name (``"flux"``) or full ref
            (``"refs/notes/flux"``).
    """

    def __init__(self, client: GitClient, notes_ref: str) -> None:
        self._client = client
        short = notes_ref.removeprefix("refs/notes/")
        self._ref = f"refs/notes/{short}"

    @property
    def ref(self) -> str:
        """Fully qualified notes ref."""
        return self._ref

    async def exists(self) -> bool:
        """Whether the notes ref exists in this repository."""
        try:
            await self._client.run(
                "show-ref",
                "--verify",
                "--quiet",
                self._ref,
                error_msg=f"looking up {self._ref} failed",
            )
        except GitError:
            return False
        return True

    @overload
    async def get(self, revision: str, model: type[T]) -> T | None: ...
    @overload
    async def get(self, revision: str, model: None = None) -> Any | None: ...
    async def get(self, revision: str, model: type[T] | None = None) -> T | Any | None:
        """Return the note attached to ``revision``, or None if there is none.

        Args:
            revision: Any revision that resolves to a commit.
            model: Type to validate the payload into.

        Raises:
            DecodeError: If a note exists but is malformed.
            ResolveError: If ``revision`` cannot be resolved.
        """
        try:
            text = await self._client.output(
                "notes",
                f"--ref={self._ref}",
                "show",
                revision,
                error_msg=f"reading note for {revision} failed",
            )
        except GitError as e:
            if _NO_NOTE in e.stderr.lower():
                return None
            raise
        try:
            return decode_note(text, model)
        except DecodeError as e:
            e.revision = revision
            e.notes_ref = self._ref
            raise

    async def set(self, revision: str, note: Any) -> None:
        """Attach ``note`` to ``revision``, replacing any existing note.

        Raises:
            EncodeError: If ``note`` cannot be serialized.
        """
        try:
            payload = encode_note(note)
        except EncodeError as e:
            e.revision = revision
            e.notes_ref = self._ref
            raise
        await self._client.run(
            "notes",
            f"--ref={self._ref}",
            "add",
            "--force",
            "--message",
            payload,
            revision,
            error_msg=f"writing note for {revision} failed",
        )
        logger.debug("note_written", notes_ref=self._ref, revision=revision)

    async def revisions(self) -> set[str]:
        """Commit identifiers that currently carry a note under this ref."""
        output = await self._client.output(
            "notes",
            f"--ref={self._ref}",
            "list",
            error_msg=f"listing {self._ref} failed",
        )
        revisions: set[str] = set()
        for line in output.splitlines():
            parts = line.split()
            if len(parts) == 2:
                revisions.add(parts[1])
        return revisions
