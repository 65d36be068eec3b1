"""Test the adaptor signature engine."""

import itertools
import random

import pytest

from adaptor_swap import curve
from adaptor_swap.engine import (
    Adaptor,
    ExchangeTerms,
    commitment_point,
    complete_signature,
    compute_adaptor,
    extract_secret,
    recover_signature,
    verify_adaptor,
)
from adaptor_swap.errors import InvalidAdaptor, OutOfRange

HEX = "0123456789abcdef"


@pytest.fixture
def counterparty_secret():
    return 0x5EED


@pytest.fixture
def terms(any_parity_secret, counterparty_secret):
    return ExchangeTerms(
        proposer=curve.xonly_pubkey(any_parity_secret),
        counterparty=curve.xonly_pubkey(counterparty_secret),
        give_id="11" * 32,
        take_id="22" * 32,
    )


@pytest.fixture
def take_signature(terms, counterparty_secret):
    """The counterparty's real signature over the take message."""
    return curve.schnorr_sign(terms.take_id, counterparty_secret, aux_rand=bytes(32))


@pytest.fixture
def adaptor(terms, take_signature, any_parity_secret):
    return compute_adaptor(terms, take_signature[:64], any_parity_secret)


class TestAdaptorRoundTrip:
    """Test building, completing and extracting adaptor signatures."""

    def test_adaptor_verifies(self, terms, adaptor, take_signature):
        """A freshly computed adaptor verifies with and without the nonce."""
        assert verify_adaptor(terms, adaptor)
        assert verify_adaptor(terms, adaptor, take_signature[:64])

    def test_completed_signature_is_valid(self, terms, adaptor, take_signature):
        """Adding the take scalar yields a BIP340 signature over the give message."""
        t = int(take_signature[64:], 16)

        sig = complete_signature(terms, adaptor, t, take_signature[:64])

        assert sig[:64] == adaptor.Ra
        assert curve.schnorr_verify(terms.give_id, terms.proposer, sig)

    def test_extraction_inverts_completion(self, terms, adaptor, take_signature):
        """The published give signature reveals exactly the take scalar."""
        t = int(take_signature[64:], 16)
        sig = complete_signature(terms, adaptor, t)

        assert extract_secret(take_signature[:64], adaptor, sig) == t
        assert recover_signature(take_signature[:64], adaptor, sig) == take_signature
        assert curve.schnorr_verify(terms.take_id, terms.counterparty, take_signature)

    def test_adapted_nonce_commits_to_take(self, terms, adaptor, take_signature):
        """lift(Ra) is lift(R) + T for the commitment of the disclosed nonce."""
        T = commitment_point(terms, take_signature[:64])
        R_p = curve.lift_x_hex(adaptor.R)
        R_a = curve.lift_x_hex(adaptor.Ra)

        assert curve.points_equal(R_a, R_p + T)
        assert curve.has_even_y(R_p + T)

    def test_nonce_source_retries_until_even(self, terms, take_signature, any_parity_secret):
        """Deterministic nonces still end with an even adapted nonce."""
        counter = itertools.count(1)

        adaptor = compute_adaptor(
            terms, take_signature[:64], any_parity_secret, nonce_source=lambda: next(counter)
        )

        assert verify_adaptor(terms, adaptor, take_signature[:64])
        assert curve.has_even_y(curve.lift_x_hex(adaptor.R) + commitment_point(terms, take_signature[:64]))


class TestAdaptorRejection:
    """Test that anything but the genuine adaptor is refused."""

    def test_mutations_rejected(self, terms, adaptor):
        """Single-character changes to any field never verify."""
        rng = random.Random(340)
        fields = ["sa", "R", "Ra"]

        for _ in range(1000):
            field = rng.choice(fields)
            value = getattr(adaptor, field)
            pos = rng.randrange(len(value))
            replacement = rng.choice([c for c in HEX if c != value[pos]])
            mutated = adaptor.model_copy(
                update={field: value[:pos] + replacement + value[pos + 1:]}
            )
            assert not verify_adaptor(terms, mutated), (field, pos)

    def test_wrong_message_rejected(self, terms, adaptor):
        """An adaptor is bound to its give message id."""
        other = terms.model_copy(update={"give_id": "33" * 32})

        assert not verify_adaptor(other, adaptor)

    def test_wrong_nonce_rejected(self, terms, adaptor, counterparty_secret):
        """An adaptor built for one nonce does not verify against another."""
        other_nonce = curve.schnorr_sign(terms.take_id, counterparty_secret)[:64]

        assert not verify_adaptor(terms, adaptor, other_nonce)

    def test_complete_refuses_invalid(self, terms, adaptor, take_signature):
        """Completion raises instead of producing a bogus signature."""
        t = int(take_signature[64:], 16)
        bad = adaptor.model_copy(
            update={"sa": curve.hex_from_int((int(adaptor.sa, 16) + 1) % curve.N)}
        )

        with pytest.raises(InvalidAdaptor):
            complete_signature(terms, bad, t)

    def test_off_curve_nonce_fails_verification(self, terms, adaptor):
        x = 1
        while True:
            try:
                curve.lift_x(x)
            except OutOfRange:
                break
            x += 1
        broken = Adaptor(sa=adaptor.sa, R=curve.hex_from_int(x), Ra=adaptor.Ra)

        assert not verify_adaptor(terms, broken)

    def test_extract_rejects_malformed_input(self, adaptor, take_signature):
        with pytest.raises(OutOfRange):
            extract_secret("0x" + "1" * 62, adaptor, take_signature)
        with pytest.raises(OutOfRange):
            extract_secret("11" * 32, adaptor, "ab" * 10)
        with pytest.raises(OutOfRange):
            extract_secret("11" * 32, adaptor, "zz" * 64)

    def test_compute_rejects_bad_key(self, terms, take_signature):
        with pytest.raises(OutOfRange):
            compute_adaptor(terms, take_signature[:64], 0)


class TestParity:
    """Test the even-y invariant of adapted nonces."""

    def test_adapted_nonce_even_over_random_trials(self):
        """Random keys and nonces always give an even R_a equal to R + T."""
        take_id = "22" * 32
        for _ in range(200):
            proposer_secret = curve.random_scalar()
            counterparty_secret = curve.random_scalar()
            terms = ExchangeTerms(
                proposer=curve.xonly_pubkey(proposer_secret),
                counterparty=curve.xonly_pubkey(counterparty_secret),
                give_id="11" * 32,
                take_id=take_id,
            )
            nonce_x = curve.schnorr_sign(take_id, counterparty_secret)[:64]

            adaptor = compute_adaptor(terms, nonce_x, proposer_secret)

            R_p = curve.lift_x_hex(adaptor.R)
            R_a = R_p + commitment_point(terms, nonce_x)
            assert curve.has_even_y(R_a)
            assert curve.points_equal(R_a, curve.lift_x_hex(adaptor.Ra))
            assert verify_adaptor(terms, adaptor, nonce_x)
