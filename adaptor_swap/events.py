"""
Schema validation and linkage for swap records.

Each ``parse_*`` function takes a raw Event and either returns the typed view
of it or raises MalformedRecord. The reducer treats anything that fails here
as a record that has not arrived yet.
"""

import json
from typing import Any

from pydantic import BaseModel, ValidationError

from .curve import HEX32, lift_x_hex
from .engine import Adaptor, ExchangeTerms
from .errors import MalformedRecord, UnsupportedTemplate
from .models import (
    AdaptorContent,
    Event,
    EventTemplate,
    Kind,
    NonceContent,
    NostrSignatureTemplate,
    ProposalContent,
    compute_event_id,
)


class Proposal(BaseModel):
    """A validated proposal record."""

    event: Event
    content: ProposalContent
    counterparty: str

    @property
    def id(self) -> str:
        return self.event.id

    @property
    def proposer(self) -> str:
        return self.event.pubkey

    def give_template(self) -> EventTemplate:
        return _nostr_template(self.content.give, "give")

    def take_template(self) -> EventTemplate:
        return _nostr_template(self.content.take, "take")

    def give_id(self) -> str:
        """Id of the message the proposer will end up signing."""
        return compute_event_id(self.proposer, self.give_template())

    def take_id(self) -> str:
        """Id of the message the counterparty will end up signing."""
        return compute_event_id(self.counterparty, self.take_template())

    def terms(self) -> ExchangeTerms:
        return ExchangeTerms(
            proposer=self.proposer,
            counterparty=self.counterparty,
            give_id=self.give_id(),
            take_id=self.take_id(),
        )


class NonceDisclosure(BaseModel):
    """A validated nonce disclosure record."""

    event: Event
    proposal_id: str
    nonce: str
    encrypted_scalar: str | None = None

    @property
    def id(self) -> str:
        return self.event.id


class AdaptorRecord(BaseModel):
    """A validated adaptor record."""

    event: Event
    proposal_id: str
    nonce_id: str
    counterparty: str
    adaptors: list[Adaptor]

    @property
    def id(self) -> str:
        return self.event.id

    @property
    def adaptor(self) -> Adaptor:
        """The single adaptor used for single-signature messages."""
        return self.adaptors[0]


class Deletion(BaseModel):
    """A validated deletion record."""

    event: Event
    target_ids: list[str]


def _nostr_template(signature_template, side: str) -> EventTemplate:
    if not isinstance(signature_template, NostrSignatureTemplate):
        raise UnsupportedTemplate(f"{side} template type not supported: {signature_template.type}")
    return signature_template.template


def _load_content(event: Event, model: type[BaseModel]) -> Any:
    try:
        return model.model_validate(json.loads(event.content))
    except (json.JSONDecodeError, ValidationError) as e:
        raise MalformedRecord(f"invalid {model.__name__} in {event.id}: {e}") from e


def _require_hex_tag(event: Event, name: str) -> str:
    value = event.first_tag(name)
    if value is None or not HEX32.fullmatch(value):
        raise MalformedRecord(f"record {event.id} lacks a valid '{name}' tag")
    return value


def _check_envelope(event: Event, kind: Kind) -> None:
    if event.kind != kind:
        raise MalformedRecord(f"record {event.id} is kind {event.kind}, expected {kind}")
    if not event.has_valid_id():
        raise MalformedRecord(f"record {event.id} does not match its content hash")


def coerce_event(raw: Event | dict | str) -> Event:
    """Validate a raw record from the transport into an Event."""
    if isinstance(raw, Event):
        return raw
    try:
        if isinstance(raw, str):
            return Event.model_validate_json(raw)
        return Event.model_validate(raw)
    except ValidationError as e:
        raise MalformedRecord(f"invalid record envelope: {e}") from e


def parse_proposal(event: Event) -> Proposal:
    _check_envelope(event, Kind.PROPOSAL)
    counterparties = event.tag_values("p")
    if len(counterparties) != 1 or not HEX32.fullmatch(counterparties[0]):
        raise MalformedRecord(f"proposal {event.id} must name exactly one counterparty")
    content = _load_content(event, ProposalContent)
    return Proposal(event=event, content=content, counterparty=counterparties[0])


def parse_nonce(event: Event) -> NonceDisclosure:
    _check_envelope(event, Kind.NONCE)
    proposal_id = _require_hex_tag(event, "e")
    _require_hex_tag(event, "p")
    content = _load_content(event, NonceContent)
    # the nonce must lift to a curve point
    lift_x_hex(content.nonce)

    # earlier revisions carried the encrypted scalar as a tag
    encrypted = content.enc_s or event.first_tag("enc_s")
    return NonceDisclosure(
        event=event,
        proposal_id=proposal_id,
        nonce=content.nonce,
        encrypted_scalar=encrypted,
    )


def parse_adaptor(event: Event) -> AdaptorRecord:
    _check_envelope(event, Kind.ADAPTOR)
    proposal_id = _require_hex_tag(event, "E")
    nonce_id = _require_hex_tag(event, "e")
    counterparty = _require_hex_tag(event, "p")
    content = _load_content(event, AdaptorContent)
    return AdaptorRecord(
        event=event,
        proposal_id=proposal_id,
        nonce_id=nonce_id,
        counterparty=counterparty,
        adaptors=content.adaptors,
    )


def parse_deletion(event: Event) -> Deletion:
    _check_envelope(event, Kind.DELETION)
    targets = [value for value in event.tag_values("e") if HEX32.fullmatch(value)]
    if not targets:
        raise MalformedRecord(f"deletion {event.id} references no record")
    return Deletion(event=event, target_ids=targets)


def bind_signature(template: EventTemplate, pubkey: str, sig: str) -> Event:
    """Attach an author and signature to a template."""
    return Event(
        id=compute_event_id(pubkey, template),
        pubkey=pubkey,
        sig=sig,
        **template.model_dump(),
    )
