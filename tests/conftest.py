"""Shared fixtures: two parties, their messages, and a full swap transcript."""

import hashlib

import pytest

from adaptor_swap import curve
from adaptor_swap.models import EventTemplate
from adaptor_swap.protocol import (
    SwapSession,
    accept,
    generate_adaptors,
    propose,
    sign_given,
    sign_taken,
)
from adaptor_swap.signers import LocalKeySigner
from adaptor_swap.vault import SelfEncryptionVault


def secret_from_seed(seed: str) -> int:
    return int.from_bytes(hashlib.sha256(seed.encode()).digest(), "big") % curve.N


def first_secret_with_parity(even: bool) -> int:
    k = 1
    while curve.has_even_y(curve.point_from_scalar(k)) != even:
        k += 1
    return k


@pytest.fixture(params=[True, False], ids=["even-y", "odd-y"])
def any_parity_secret(request):
    """Proposer secrets whose full public point has either y parity."""
    return first_secret_with_parity(request.param)


@pytest.fixture
def proposer_signer():
    return LocalKeySigner(secret_from_seed("proposer"))


@pytest.fixture
def counterparty_signer():
    return LocalKeySigner(secret_from_seed("counterparty"))


@pytest.fixture
def proposer(proposer_signer):
    """Proposer session; holds the raw key."""
    return SwapSession(signer=proposer_signer)


@pytest.fixture
def counterparty(counterparty_signer):
    """Counterparty session with a self-encryption vault."""
    return SwapSession(
        signer=counterparty_signer, vault=SelfEncryptionVault(counterparty_signer)
    )


@pytest.fixture
def give_template():
    return EventTemplate(kind=1, content="GM from the proposer", tags=[], created_at=1700000000)


@pytest.fixture
def take_template():
    return EventTemplate(
        kind=1, content="GM from the counterparty", tags=[["t", "gm"]], created_at=1700000000
    )


@pytest.fixture
def proposal(proposer, counterparty, give_template, take_template):
    return propose(
        proposer,
        counterparty.pubkey,
        give_template,
        take_template,
        description="Swap a GM for a GM",
        created_at=1700000100,
    )


@pytest.fixture
def transcript(proposer, counterparty, proposal):
    """Every record of a completed swap, keyed by role in the exchange."""
    nonce = accept(counterparty, proposal, created_at=1700000200)
    adaptor = generate_adaptors(proposer, proposal, nonce, created_at=1700000300)
    given = sign_given(counterparty, proposal, nonce, adaptor)
    taken = sign_taken(proposer, proposal, nonce, adaptor, given)
    return {
        "proposal": proposal.event,
        "nonce": nonce,
        "adaptor": adaptor,
        "given": given,
        "taken": taken,
    }
