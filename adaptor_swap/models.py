"""
Data structures for swap records and derived swap state.

Everything that travels over the log is an Event: a content-addressed,
Schnorr-signed record. The swap protocol layers four record kinds on top,
plus the two settlement messages whose templates the proposal carries.
"""

import hashlib
import json
from enum import Enum, IntEnum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

from .engine import HEX32_PATTERN, HEX64_PATTERN, Adaptor


class Kind(IntEnum):
    """Record kinds used by the swap protocol."""

    DELETION = 5
    PROPOSAL = 455
    NONCE = 456
    ADAPTOR = 457


class SwapState(str, Enum):
    """Current phase of a swap, derived from the records observed so far."""

    NONCE_PENDING = "nonce-pending"  # Waiting for the counterparty to accept
    ADAPTOR_PENDING = "adaptor-pending"  # Nonce disclosed, proposer must adapt
    SETTLEMENT_A_PENDING = "settlement-a-pending"  # Counterparty must publish give
    SETTLEMENT_B_PENDING = "settlement-b-pending"  # Proposer must publish take
    COMPLETED = "completed"  # Both messages published
    REVOKED = "revoked"  # Proposal deleted before any nonce


class EventTemplate(BaseModel):
    """An unsigned message: everything but the author, id and signature."""

    kind: int = Field(ge=0, description="Record kind")
    content: str = Field(default="", description="Record content")
    tags: list[list[str]] = Field(default_factory=list, description="Record tags")
    created_at: int = Field(ge=0, description="Unix timestamp")


def compute_event_id(pubkey: str, template: EventTemplate) -> str:
    """Content hash of a template bound to its author."""
    serialized = json.dumps(
        [0, pubkey, template.created_at, template.kind, template.tags, template.content],
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()


class Event(EventTemplate):
    """A signed record as it appears on the log."""

    id: str = Field(pattern=HEX32_PATTERN, description="Content hash of the record")
    pubkey: str = Field(pattern=HEX32_PATTERN, description="Author x-only pubkey")
    sig: str = Field(pattern=HEX64_PATTERN, description="BIP340 signature over id")

    def template(self) -> EventTemplate:
        return EventTemplate(
            kind=self.kind,
            content=self.content,
            tags=self.tags,
            created_at=self.created_at,
        )

    def has_valid_id(self) -> bool:
        return compute_event_id(self.pubkey, self.template()) == self.id

    def tag_values(self, name: str) -> list[str]:
        """Values of every tag with the given (case-sensitive) name."""
        return [tag[1] for tag in self.tags if len(tag) >= 2 and tag[0] == name]

    def first_tag(self, name: str) -> str | None:
        values = self.tag_values(name)
        return values[0] if values else None

    def sort_key(self) -> tuple[int, str]:
        """Stable tie-break between competing records: oldest, then lowest id."""
        return (self.created_at, self.id)


class NostrSignatureTemplate(BaseModel):
    """A message signed with a single BIP340 signature."""

    type: Literal["nostr"]
    template: EventTemplate


class CashuSignatureTemplate(BaseModel):
    """
    An ecash spend condition.

    Parsed so proposals carrying it are not rejected outright, but the engine
    only knows how to adapt single-signature log messages.
    """

    type: Literal["cashu"]
    amount: int = Field(ge=0)
    mint: list[str] | str


SignatureTemplate = Annotated[
    Union[NostrSignatureTemplate, CashuSignatureTemplate],
    Field(discriminator="type"),
]


class ProposalContent(BaseModel):
    """Content of a swap proposal record."""

    give: SignatureTemplate = Field(description="What the proposer will sign")
    take: SignatureTemplate = Field(description="What the counterparty will sign")
    description: str | None = Field(None, description="Free-form note")
    listing: str | None = Field(None, description="Listing this proposal answers")
    exp: int | None = Field(None, description="Suggested expiry timestamp")


class NonceContent(BaseModel):
    """Content of a nonce disclosure record."""

    nonce: str = Field(pattern=HEX32_PATTERN, description="x-coordinate of R_s")
    enc_s: str | None = Field(
        None, description="Self-encrypted scalar half of the take signature"
    )


class AdaptorContent(BaseModel):
    """Content of an adaptor record."""

    adaptors: list[Adaptor] = Field(min_length=1)
    cashu: str | None = None
