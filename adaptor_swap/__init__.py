"""Adaptor Swap - atomic exchange of signed log messages via adaptor signatures."""

__version__ = "0.1.0"

from .engine import (
    Adaptor,
    ExchangeTerms,
    complete_signature,
    compute_adaptor,
    extract_secret,
    recover_signature,
    verify_adaptor,
)
from .models import Event, EventTemplate, SwapState
from .protocol import SwapSession, assemble_swap, derive_state

__all__ = [
    "Adaptor",
    "ExchangeTerms",
    "compute_adaptor",
    "verify_adaptor",
    "complete_signature",
    "extract_secret",
    "recover_signature",
    "Event",
    "EventTemplate",
    "SwapState",
    "SwapSession",
    "assemble_swap",
    "derive_state",
]
