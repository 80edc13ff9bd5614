"""Commit request models."""

import re
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Mapping, Optional, Union

_IDENTITY = re.compile(r"^\s*(?P<name>[^<>]+?)\s*<(?P<email>[^<>\s]+)>\s*$")


@dataclass(frozen=True)
class Identity:
    """A commit author, committer or co-author."""
    name: str
    email: str

    def __post_init__(self):
        if not self.name or not self.name.strip():
            raise ValueError("identity name cannot be empty")
        if not self.email or "<" in self.email or ">" in self.email:
            raise ValueError(f"invalid identity email: '{self.email}'")

    def __str__(self) -> str:
        return f"{self.name} <{self.email}>"

    @classmethod
    def parse(cls, value: str) -> "Identity":
        """Parse the 'Name <email>' form git uses."""
        match = _IDENTITY.match(value)
        if not match:
            raise ValueError(f"expected 'Name <email>', got '{value}'")
        return cls(match.group("name"), match.group("email"))


# A co-author lookup may be synchronous or a coroutine; None means "no co-author"
CoAuthorResolver = Callable[[], Union[Optional[Identity], Awaitable[Optional[Identity]]]]


@dataclass(frozen=True)
class CommitOptions:
    """Flags that change how a commit is built."""
    amend: bool = False
    signoff: bool = False


@dataclass
class CommitRequest:
    """Everything the commit pipeline needs to record one commit."""
    message: str
    author: Optional[Identity] = None  # None = repository-configured identity
    options: CommitOptions = field(default_factory=CommitOptions)
    env: Mapping[str, str] = field(default_factory=dict)  # Forwarded to the git process
    co_author: Optional[CoAuthorResolver] = None

    def __post_init__(self):
        if not self.message or not self.message.strip():
            raise ValueError("commit message cannot be empty")
