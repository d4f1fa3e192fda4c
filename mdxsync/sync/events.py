"""
Typed sync triggers.

Webhook payloads are resolved once, at the endpoint, into one of the
variants below; the orchestrator only ever sees typed fields. Unknown
fields in GitHub payloads are ignored.
"""

from typing import List, Literal, Optional, Union

from pydantic import BaseModel, Field, ValidationError

from .error_tracker import SyncException


class EventPayloadError(SyncException):
    """A webhook body that does not have the shape of its declared event."""
    pass


class RepositoryOwner(BaseModel):
    login: Optional[str] = None
    name: Optional[str] = None

    @property
    def identity(self) -> Optional[str]:
        return self.login or self.name


class Repository(BaseModel):
    name: str
    full_name: Optional[str] = None
    owner: Optional[RepositoryOwner] = None
    default_branch: Optional[str] = None

    def matches(self, owner: str, name: str) -> bool:
        if self.full_name:
            return self.full_name.lower() == f"{owner}/{name}".lower()
        owner_id = self.owner.identity if self.owner else None
        return self.name.lower() == name.lower() and (owner_id is None or owner_id.lower() == owner.lower())


class Commit(BaseModel):
    id: Optional[str] = None
    message: Optional[str] = None
    added: List[str] = Field(default_factory=list)
    modified: List[str] = Field(default_factory=list)
    removed: List[str] = Field(default_factory=list)


class PushEvent(BaseModel):
    kind: Literal["push"] = "push"
    ref: str
    before: Optional[str] = None
    after: Optional[str] = None
    repository: Repository
    commits: List[Commit] = Field(default_factory=list)

    @property
    def branch(self) -> Optional[str]:
        prefix = "refs/heads/"
        return self.ref[len(prefix):] if self.ref.startswith(prefix) else None


class BranchRef(BaseModel):
    ref: str
    sha: Optional[str] = None


class PullRequest(BaseModel):
    number: Optional[int] = None
    merged: bool = False
    base: BranchRef
    head: Optional[BranchRef] = None
    merge_commit_sha: Optional[str] = None


class PullRequestEvent(BaseModel):
    kind: Literal["pull_request"] = "pull_request"
    action: str
    number: Optional[int] = None
    pull_request: PullRequest
    repository: Repository


class PingEvent(BaseModel):
    kind: Literal["ping"] = "ping"
    zen: Optional[str] = None
    hook_id: Optional[int] = None
    repository: Optional[Repository] = None


class ManualTrigger(BaseModel):
    """On-demand full scan, from the CLI or an operator."""
    kind: Literal["manual"] = "manual"
    force: bool = False


class UnsupportedEvent(BaseModel):
    kind: Literal["unsupported"] = "unsupported"
    event_name: str


TriggerEvent = Union[PushEvent, PullRequestEvent, PingEvent, ManualTrigger, UnsupportedEvent]

_EVENT_MODELS = {
    "push": PushEvent,
    "pull_request": PullRequestEvent,
    "ping": PingEvent,
}


def parse_event(event_name: str, payload: dict) -> TriggerEvent:
    """
    Resolve a GitHub event name and JSON body into a trigger variant.

    Raises EventPayloadError when the body does not fit the event.
    """
    if not isinstance(payload, dict):
        raise EventPayloadError(f"Payload for '{event_name}' must be a JSON object")

    model = _EVENT_MODELS.get(event_name)
    try:
        if model is None:
            return UnsupportedEvent(event_name=event_name)
        data = {k: v for k, v in payload.items() if k != "kind"}
        return model(**data)
    except ValidationError as e:
        raise EventPayloadError(f"Invalid '{event_name}' payload: {e.error_count()} validation errors",
                                recovery_suggestion=str(e))
