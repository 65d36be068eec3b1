"""
Swap protocol: state derivation and role-gated transitions.

The state of a swap is never stored. It is recomputed from whatever records
have been observed for a proposal, in any order and with any number of
duplicates:

    proposal ──► nonce ──► adaptor ──► give (settlement A) ──► take (settlement B)
        │
        └──► deletion (only effective before a nonce exists)

The transition functions build the next record for one party. They never
broadcast anything; handing the record to the relays is the caller's job.
"""

import time
from typing import Iterable

import structlog
from pydantic import BaseModel, ConfigDict, Field

from . import curve, engine
from .errors import (
    InvalidAdaptor,
    MalformedRecord,
    RoleMismatch,
    SwapError,
    UnsupportedTemplate,
)
from .events import (
    AdaptorRecord,
    Deletion,
    NonceDisclosure,
    Proposal,
    bind_signature,
    coerce_event,
    parse_adaptor,
    parse_deletion,
    parse_nonce,
    parse_proposal,
)
from .models import (
    AdaptorContent,
    Event,
    EventTemplate,
    Kind,
    NonceContent,
    NostrSignatureTemplate,
    ProposalContent,
    SwapState,
)
from .signers import KeyHolder, MessageSigner, require_key_holder
from .vault import SecretVault

logger = structlog.get_logger()


class SwapSession(BaseModel):
    """
    The acting party's capabilities, passed explicitly to every transition.

    ``vault`` is only needed by the counterparty.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    signer: MessageSigner
    vault: SecretVault | None = None

    @property
    def pubkey(self) -> str:
        return self.signer.pubkey


class RejectedRecord(BaseModel):
    """A record that was observed but does not count towards the swap."""

    event_id: str
    reason: str


class Swap(BaseModel):
    """Everything the reducer learned about one proposal."""

    proposal: Proposal
    state: SwapState
    nonce: NonceDisclosure | None = None
    adaptor: AdaptorRecord | None = None
    given: Event | None = None
    taken: Event | None = None
    revocation: Deletion | None = None
    rejected: list[RejectedRecord] = Field(default_factory=list)

    @property
    def untrusted(self) -> bool:
        """True once an adaptor for this swap failed verification."""
        return any(r.reason == "adaptor verification failed" for r in self.rejected)


def _now() -> int:
    return int(time.time())


def _unique(records: Iterable[Event | dict | str]) -> tuple[list[Event], list[RejectedRecord]]:
    seen: dict[tuple[str, str], Event] = {}
    rejected = []
    for raw in records:
        try:
            event = coerce_event(raw)
        except MalformedRecord as e:
            rejected.append(RejectedRecord(event_id="", reason=str(e)))
            continue
        seen.setdefault((event.id, event.sig), event)
    ordered = sorted(seen.values(), key=lambda e: (e.sort_key(), e.sig))
    return ordered, rejected


def _settlement(
    events: list[Event], message_id: str, pubkey: str
) -> tuple[Event | None, list[RejectedRecord]]:
    rejected = []
    for event in events:
        if event.id != message_id:
            continue
        if event.pubkey == pubkey and event.has_valid_id() and curve.schnorr_verify(
            message_id, pubkey, event.sig
        ):
            return event, rejected
        rejected.append(RejectedRecord(event_id=event.id, reason="invalid settlement signature"))
    return None, rejected


def assemble_swap(proposal: Proposal, records: Iterable[Event | dict | str]) -> Swap:
    """
    Pure reducer from an observed record set to the swap's current view.

    Malformed or unlinked records are ignored and listed in ``rejected``.
    Competing nonce disclosures or adaptors are resolved by the oldest
    ``(created_at, id)``; once an adaptor exists, the nonce it commits to wins.
    """
    events, rejected = _unique(records)

    nonces: list[NonceDisclosure] = []
    adaptors: list[AdaptorRecord] = []
    deletions: list[Deletion] = []

    for event in events:
        if event.id == proposal.id:
            continue
        try:
            if event.kind == Kind.NONCE:
                nonce = parse_nonce(event)
                if nonce.proposal_id != proposal.id:
                    continue
                if event.pubkey != proposal.counterparty:
                    raise MalformedRecord("nonce disclosure not authored by the counterparty")
                if event.first_tag("p") != proposal.proposer:
                    raise MalformedRecord("nonce disclosure not addressed to the proposer")
                nonces.append(nonce)
            elif event.kind == Kind.ADAPTOR:
                record = parse_adaptor(event)
                if record.proposal_id != proposal.id:
                    continue
                if event.pubkey != proposal.proposer:
                    raise MalformedRecord("adaptor not authored by the proposer")
                if record.counterparty != proposal.counterparty:
                    raise MalformedRecord("adaptor not addressed to the counterparty")
                adaptors.append(record)
            elif event.kind == Kind.DELETION:
                deletion = parse_deletion(event)
                if proposal.id not in deletion.target_ids:
                    continue
                if event.pubkey != proposal.proposer:
                    raise MalformedRecord("deletion not authored by the proposer")
                deletions.append(deletion)
        except MalformedRecord as e:
            logger.debug("Ignoring record", event_id=event.id, reason=str(e))
            rejected.append(RejectedRecord(event_id=event.id, reason=str(e)))

    # templates the engine cannot adapt never get past a nonce disclosure
    try:
        terms = proposal.terms()
    except UnsupportedTemplate as e:
        logger.debug("Proposal cannot be adapted", proposal_id=proposal.id, reason=str(e))
        terms = None
    nonce_by_id = {n.id: n for n in nonces}

    adaptor = None
    for record in adaptors:
        if terms is None:
            rejected.append(RejectedRecord(event_id=record.id, reason="unsupported template"))
            continue
        linked = nonce_by_id.get(record.nonce_id)
        if linked is None:
            rejected.append(RejectedRecord(event_id=record.id, reason="unknown nonce disclosure"))
            continue
        if not engine.verify_adaptor(terms, record.adaptor, linked.nonce):
            logger.warning("Adaptor failed verification", event_id=record.id)
            rejected.append(RejectedRecord(event_id=record.id, reason="adaptor verification failed"))
            continue
        adaptor = record
        break

    if adaptor is not None:
        nonce = nonce_by_id[adaptor.nonce_id]
    else:
        nonce = nonces[0] if nonces else None

    revocation = None
    if deletions and adaptor is None:
        first = deletions[0]
        if not any(n.event.created_at <= first.event.created_at for n in nonces):
            revocation = first

    given = taken = None
    if terms is not None:
        given, bad = _settlement(events, terms.give_id, proposal.proposer)
        rejected.extend(bad)
        taken, bad = _settlement(events, terms.take_id, proposal.counterparty)
        rejected.extend(bad)

    if revocation is not None:
        state = SwapState.REVOKED
    elif nonce is None:
        state = SwapState.NONCE_PENDING
    elif adaptor is None:
        state = SwapState.ADAPTOR_PENDING
    elif given is None:
        state = SwapState.SETTLEMENT_A_PENDING
    elif taken is None:
        state = SwapState.SETTLEMENT_B_PENDING
    else:
        state = SwapState.COMPLETED

    return Swap(
        proposal=proposal,
        state=state,
        nonce=nonce if state != SwapState.REVOKED else None,
        adaptor=adaptor,
        given=given if adaptor is not None else None,
        taken=taken if given is not None and adaptor is not None else None,
        revocation=revocation,
        rejected=rejected,
    )


def find_proposal(records: Iterable[Event | dict | str], proposal_id: str) -> Proposal | None:
    for raw in records:
        try:
            event = coerce_event(raw)
            if event.id == proposal_id:
                return parse_proposal(event)
        except SwapError as e:
            logger.debug("Ignoring proposal candidate", reason=str(e))
    return None


def derive_state(records: Iterable[Event | dict | str], proposal_id: str) -> SwapState | None:
    """
    Current phase of the swap rooted at ``proposal_id``.

    Returns None while the proposal itself has not been observed.
    """
    records = list(records)
    proposal = find_proposal(records, proposal_id)
    if proposal is None:
        return None
    return assemble_swap(proposal, records).state


def _expect_role(session: SwapSession, pubkey: str, role: str) -> None:
    if session.pubkey != pubkey:
        raise RoleMismatch(f"only the {role} can take this step")


def propose(
    session: SwapSession,
    counterparty: str,
    give: EventTemplate,
    take: EventTemplate,
    description: str | None = None,
    created_at: int | None = None,
) -> Proposal:
    """Proposer: offer to sign ``give`` if ``counterparty`` signs ``take``."""
    if not curve.HEX32.fullmatch(counterparty):
        raise MalformedRecord("counterparty must be a 64-character hex pubkey")

    content = ProposalContent(
        give=NostrSignatureTemplate(type="nostr", template=give),
        take=NostrSignatureTemplate(type="nostr", template=take),
        description=description,
    )
    template = EventTemplate(
        kind=int(Kind.PROPOSAL),
        content=content.model_dump_json(exclude_none=True),
        tags=[["p", counterparty]],
        created_at=created_at or _now(),
    )
    proposal = parse_proposal(session.signer.sign_event(template))
    logger.info("Built swap proposal", proposal_id=proposal.id, counterparty=counterparty)
    return proposal


def revoke(session: SwapSession, proposal: Proposal, created_at: int | None = None) -> Event:
    """
    Proposer: delete the proposal.

    The record is always built; whether it takes effect is decided by the
    reducer, which ignores it once a nonce disclosure exists.
    """
    _expect_role(session, proposal.proposer, "proposer")
    template = EventTemplate(
        kind=int(Kind.DELETION),
        content="Revoked",
        tags=[["e", proposal.id], ["k", str(int(Kind.PROPOSAL))]],
        created_at=created_at or _now(),
    )
    logger.info("Built revocation", proposal_id=proposal.id)
    return session.signer.sign_event(template)


def accept(session: SwapSession, proposal: Proposal, created_at: int | None = None) -> Event:
    """
    Counterparty: sign the take message for real and disclose only its nonce.

    The scalar half goes into the record encrypted to ourselves.
    """
    _expect_role(session, proposal.counterparty, "counterparty")
    if session.vault is None:
        raise RoleMismatch("accepting a proposal needs a secret vault")

    take_id = proposal.take_id()
    signature = session.signer.sign(take_id)
    if not curve.schnorr_verify(take_id, session.pubkey, signature):
        raise SwapError("signer returned an invalid signature for the take message")

    content = NonceContent(nonce=signature[:64], enc_s=session.vault.store(signature[64:]))
    template = EventTemplate(
        kind=int(Kind.NONCE),
        content=content.model_dump_json(),
        tags=[["e", proposal.id], ["p", proposal.proposer]],
        created_at=created_at or _now(),
    )
    logger.info("Built nonce disclosure", proposal_id=proposal.id)
    return session.signer.sign_event(template)


def generate_adaptors(
    session: SwapSession,
    proposal: Proposal,
    nonce_event: Event,
    created_at: int | None = None,
) -> Event:
    """
    Proposer: commit to the give signature against the disclosed nonce.

    Needs the raw private key.

    Raises:
        KeyUnavailable: If the session signer is not a KeyHolder
        MalformedRecord: If the nonce disclosure is malformed or unlinked
    """
    signer: KeyHolder = require_key_holder(session.signer, "generating adaptors")
    _expect_role(session, proposal.proposer, "proposer")

    swap = assemble_swap(proposal, [proposal.event, nonce_event])
    if swap.nonce is None or swap.nonce.id != nonce_event.id:
        raise MalformedRecord(f"nonce disclosure {nonce_event.id} is not valid for this proposal")

    terms = proposal.terms()
    adaptor = engine.compute_adaptor(terms, swap.nonce.nonce, signer.secret)

    template = EventTemplate(
        kind=int(Kind.ADAPTOR),
        content=AdaptorContent(adaptors=[adaptor]).model_dump_json(exclude_none=True),
        tags=[["E", proposal.id], ["e", nonce_event.id], ["p", proposal.counterparty]],
        created_at=created_at or _now(),
    )
    logger.info("Built adaptor record", proposal_id=proposal.id, nonce_id=nonce_event.id)
    return signer.sign_event(template)


def sign_given(
    session: SwapSession,
    proposal: Proposal,
    nonce_event: Event,
    adaptor_event: Event,
) -> Event:
    """
    Counterparty: complete the proposer's give signature (settlement A).

    Publishing the result hands the proposer our take signature.

    Raises:
        InvalidAdaptor: If the adaptor does not verify
    """
    _expect_role(session, proposal.counterparty, "counterparty")
    if session.vault is None:
        raise RoleMismatch("completing the give message needs a secret vault")

    nonce = parse_nonce(nonce_event)
    record = parse_adaptor(adaptor_event)
    if nonce.proposal_id != proposal.id or record.proposal_id != proposal.id:
        raise MalformedRecord("records do not belong to this proposal")
    if record.nonce_id != nonce.id:
        raise InvalidAdaptor("adaptor commits to a different nonce disclosure")
    if nonce.encrypted_scalar is None:
        raise MalformedRecord(f"nonce disclosure {nonce.id} carries no stored scalar")

    secret = curve.scalar_from_hex(session.vault.reveal(nonce.encrypted_scalar))
    terms = proposal.terms()
    sig = engine.complete_signature(terms, record.adaptor, secret, nonce.nonce)

    given = bind_signature(proposal.give_template(), proposal.proposer, sig)
    if not curve.schnorr_verify(given.id, proposal.proposer, given.sig):
        raise InvalidAdaptor("completed signature does not verify")
    logger.info("Completed give message", proposal_id=proposal.id, message_id=given.id)
    return given


def sign_taken(
    session: SwapSession,
    proposal: Proposal,
    nonce_event: Event,
    adaptor_event: Event,
    given: Event,
) -> Event:
    """
    Proposer: rebuild the counterparty's take signature (settlement B).

    Raises:
        MalformedRecord: If ``given`` is not the genuine settlement A
        InvalidAdaptor: If the recovered signature does not verify
    """
    _expect_role(session, proposal.proposer, "proposer")

    terms = proposal.terms()
    if given.id != terms.give_id or not curve.schnorr_verify(
        terms.give_id, proposal.proposer, given.sig
    ):
        raise MalformedRecord("published give message is not a valid settlement")

    nonce = parse_nonce(nonce_event)
    record = parse_adaptor(adaptor_event)
    sig = engine.recover_signature(nonce.nonce, record.adaptor, given.sig)

    taken = bind_signature(proposal.take_template(), proposal.counterparty, sig)
    if not curve.schnorr_verify(taken.id, proposal.counterparty, taken.sig):
        raise InvalidAdaptor("recovered take signature does not verify")
    logger.info("Recovered take message", proposal_id=proposal.id, message_id=taken.id)
    return taken
