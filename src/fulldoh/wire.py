"""Best-effort inspection of raw DNS query bytes.

Brief:
  Helpers that pull the first question's name and type out of a wire-format
  DNS message without decoding the full message. They are used for logging
  and for locating the question section when a SERVFAIL has to be
  synthesized, and never change the bytes that are proxied.

Inputs:
  - Raw DNS message bytes (possibly truncated, malformed or hostile).

Outputs:
  - Optional values: ``None`` means the field could not be extracted safely.
"""

from __future__ import annotations

from typing import List, NamedTuple, Optional, Tuple

from dnslib import QTYPE

HEADER_LEN = 12
MAX_LABEL_LEN = 63


class QuestionInfo(NamedTuple):
    """First question of a DNS message; each field is None when absent."""

    qname: Optional[str]
    qtype: Optional[int]


def qdcount(data: bytes) -> Optional[int]:
    """Brief: Return the QDCOUNT header field, or None for a short header."""
    if len(data) < HEADER_LEN:
        return None
    return int.from_bytes(data[4:6], "big")


def scan_qname(data: bytes, start: int = HEADER_LEN) -> Optional[Tuple[List[bytes], int]]:
    """
    Brief: Walk the length-prefixed labels of a name starting at ``start``.

    Inputs:
      - data: DNS message bytes.
      - start: offset of the first length byte (12 for the first question).

    Outputs:
      - (labels, end): raw label bytes and the offset just past the zero
        terminator, or None when a label is longer than 63 octets (this
        includes compression pointers), a label runs past the buffer, or the
        terminator is missing.

    Example:
      >>> scan_qname(b"\\x00" * 12 + b"\\x03www\\x00")
      ([b'www'], 17)
    """
    labels: List[bytes] = []
    pos = start
    end = len(data)
    while pos < end:
        ln = data[pos]
        pos += 1
        if ln == 0:
            return labels, pos
        if ln > MAX_LABEL_LEN or pos + ln > end:
            return None
        labels.append(bytes(data[pos : pos + ln]))
        pos += ln
    return None


def find_question_end(data: bytes) -> Optional[int]:
    """
    Brief: Offset just past QTYPE and QCLASS of the first question.

    Inputs:
      - data: DNS message bytes.

    Outputs:
      - int offset, or None when the message has no header, no question, or
        the question cannot be delimited within the buffer.
    """
    count = qdcount(data)
    if not count:
        return None
    scanned = scan_qname(data)
    if scanned is None:
        return None
    _, name_end = scanned
    if name_end + 4 > len(data):
        return None
    return name_end + 4


def inspect_question(data: bytes) -> QuestionInfo:
    """
    Brief: Extract the first question's name and type for diagnostics.

    Inputs:
      - data: arbitrary bytes; nothing about them is trusted.

    Outputs:
      - QuestionInfo(qname, qtype). The root name is returned as ''. Any
        anomaly yields None for the affected field and stops parsing.

    Example:
      >>> q = b"\\x12\\x34\\x01\\x00\\x00\\x01" + b"\\x00" * 6
      >>> inspect_question(q + b"\\x07example\\x03com\\x00\\x00\\x01\\x00\\x01")
      QuestionInfo(qname='example.com', qtype=1)
    """
    try:
        data = bytes(data)
        if not qdcount(data):
            return QuestionInfo(None, None)
        scanned = scan_qname(data)
        if scanned is None:
            return QuestionInfo(None, None)
        labels, name_end = scanned
        qname = ".".join(
            label.decode("ascii", errors="backslashreplace") for label in labels
        )
        if name_end + 2 > len(data):
            return QuestionInfo(qname, None)
        return QuestionInfo(qname, int.from_bytes(data[name_end : name_end + 2], "big"))
    except Exception:
        return QuestionInfo(None, None)


def qtype_name(qtype: Optional[int]) -> str:
    """Render a numeric qtype for log lines ('A', 'AAAA', 'TYPE65534', ...)."""
    if qtype is None:
        return "<unknown>"
    name = QTYPE.forward.get(qtype)
    return str(name) if name is not None else f"TYPE{qtype}"
