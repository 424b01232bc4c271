"""SERVFAIL synthesis for queries the upstream could not answer."""

from __future__ import annotations

import logging

from .wire import HEADER_LEN, find_question_end, qdcount

logger = logging.getLogger("fulldoh.servfail")

# QR=1; RD is copied from the request.
_FLAGS_HI_QR = 0x80
_FLAGS_RD = 0x01
# RA=1, RCODE=2 (SERVFAIL).
_FLAGS_LO_RA_SERVFAIL = 0x82
# Question bytes echoed when the question boundary cannot be found.
_FALLBACK_QUESTION_LEN = 5


def build_servfail(request: bytes) -> bytes:
    """
    Brief: Build a SERVFAIL reply that echoes the client's own question.

    Inputs:
      - request: raw query bytes as received from the client.

    Outputs:
      - bytes: 12-byte header plus the first question section of the request.

    Notes:
      - ID and RD are copied, QR and RA are set, RCODE is 2 and QDCOUNT is
        left as received.
      - The answer count is zeroed, and unlike a plain header copy so are
        the authority and additional counts: no records follow the
        question, so an EDNS query (ARCOUNT=1) must not get a reply that
        claims an OPT record it does not carry.
      - A request with QDCOUNT=0 gets no question section; with QDCOUNT>1
        only the first question is echoed.
      - When the question cannot be delimited at most 5 bytes after the
        header are echoed.
      - Requests shorter than a header, or any unexpected error, produce 12
        zero bytes. This function never raises.

    Example:
      >>> q = bytes.fromhex("123401000001000000000000") + b"\\x01a\\x00\\x00\\x01\\x00\\x01"
      >>> build_servfail(q).hex()
      '12348082000100000000000001610000010001'
    """
    try:
        request = bytes(request)
        if len(request) < HEADER_LEN:
            return bytes(HEADER_LEN)

        header = bytearray(request[:HEADER_LEN])
        header[2] = _FLAGS_HI_QR | (request[2] & _FLAGS_RD)
        header[3] = _FLAGS_LO_RA_SERVFAIL
        header[6:12] = bytes(6)

        if not qdcount(request):
            return bytes(header)

        qend = find_question_end(request)
        if qend is None:
            question = request[HEADER_LEN : HEADER_LEN + _FALLBACK_QUESTION_LEN]
        else:
            question = request[HEADER_LEN:qend]
        return bytes(header) + question
    except Exception as e:  # pragma: no cover - defensive: failure path must still answer
        logger.debug("SERVFAIL synthesis failed, using zero header: %s", e)
        return bytes(HEADER_LEN)
