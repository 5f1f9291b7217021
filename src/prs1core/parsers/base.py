"""
Decoder error types.

Structural corruption inside device data (bad lengths, truncated frames,
unknown codes) is recovered locally by the decoders and never raised.
These exceptions are for caller precondition violations and for headers
that cannot be interpreted at all.
"""


class ParserError(Exception):
    """Base exception for decode failures."""

    def __init__(self, message: str, parser: str | None = None):
        self.message = message
        self.parser = parser
        super().__init__(f"[{parser}] {message}" if parser else message)


class ByteRangeError(ParserError, EOFError):
    """A read, seek or slice fell outside the buffer, or used a negative size."""

    def __init__(self, message: str):
        super().__init__(message, parser="byte_reader")


class EDFFormatError(ParserError):
    """An EDF fixed header field is missing or inconsistent."""

    def __init__(self, message: str):
        super().__init__(message, parser="edf")
