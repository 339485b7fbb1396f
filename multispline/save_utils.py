import re
from enum import Enum, auto
from typing import Iterable

import numpy as np

from multispline.errors import FormatError

SAVE_DOUBLE_PRECISION = 17
INT_MIN = -(2**31)
INT_MAX = 2**31 - 1

_INT_TOKEN = re.compile(r"[+-]?[0-9]+")
_FLOAT_TOKEN = re.compile(
    r"[+-]?(?:(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:[eE][+-]?[0-9]+)?|inf(?:inity)?|nan)",
    re.IGNORECASE | re.ASCII,
)


def format_float(value: float) -> str:
    """
    Locale independent decimal representation of `value` that reads back to the
    same double.

    Examples
    --------
    >>> format_float(0.1)
    '0.10000000000000001'
    >>> format_float(3.0)
    '3'
    """
    return format(float(value), f".{SAVE_DOUBLE_PRECISION}g")


def parse_int(token: str) -> int:
    """
    Parse a decimal integer token.

    Raises
    ------
    FormatError
        If the token is not a decimal integer or does not fit in 32 bits.
    """
    if _INT_TOKEN.fullmatch(token) is None:
        raise FormatError(f"Invalid integer token {token!r}.")
    value = int(token)
    if not INT_MIN <= value <= INT_MAX:
        raise FormatError(f"Integer token {token!r} is out of range.")
    return value


def parse_float(token: str) -> float:
    """
    Parse a decimal floating point token (`inf` and `nan` accepted).

    Raises
    ------
    FormatError
        If the token is not a decimal number or overflows a double.
    """
    if _FLOAT_TOKEN.fullmatch(token) is None:
        raise FormatError(f"Invalid number token {token!r}.")
    value = float(token)
    if np.isinf(value) and "inf" not in token.lower():
        raise FormatError(f"Number token {token!r} is out of range.")
    return value


def encode_bspline(
    degrees: Iterable[int],
    knots: Iterable[np.ndarray[np.floating]],
    coefficients: np.ndarray[np.floating],
) -> str:
    """
    Encode a B-spline in the line oriented text format.

    The format is::

        # comment lines start with '#'
        <number of variables>
        <degree_i> <knot vector length_i>      (for every variable)
        <knot values, space separated>         (for every variable)
        <coefficient rows> <coefficient columns>
        <coefficient row(s), space separated>

    Parameters
    ----------
    degrees : Iterable[int]
        Degree of every variable.
    knots : Iterable[np.ndarray[np.floating]]
        Knot vector of every variable.
    coefficients : np.ndarray[np.floating]
        Coefficient matrix.

    Returns
    -------
    text : str
        Encoded B-spline, ending with a newline.
    """
    degrees = list(degrees)
    knots = list(knots)
    coefficients = np.atleast_2d(np.asarray(coefficients, dtype="float"))
    lines = [
        "# Saved BSpline",
        f"# Number of bases: {len(knots)}",
        str(len(knots)),
    ]
    for p, knot in zip(degrees, knots):
        lines.append(f"{int(p)} {len(knot)}")
        lines.append(" ".join(format_float(value) for value in knot))
    lines.append("# Coefficient matrix:")
    lines.append(f"{coefficients.shape[0]} {coefficients.shape[1]}")
    for row in coefficients:
        lines.append(" ".join(format_float(value) for value in row))
    return "\n".join(lines) + "\n"


class _State(Enum):
    NUM_VARIABLES = auto()
    DEGREE = auto()
    KNOTS = auto()
    COEFFICIENTS_SHAPE = auto()
    COEFFICIENTS = auto()
    DONE = auto()


def _tokens_as(tokens: list[str], count: int, parser, line_number: int, what: str) -> list:
    if len(tokens) != count:
        raise FormatError(
            f"Line {line_number}: expected {count} token(s) for {what}, got {len(tokens)}."
        )
    try:
        return [parser(token) for token in tokens]
    except FormatError as e:
        raise FormatError(f"Line {line_number}: {e}") from e


def decode_bspline(
    text: str,
) -> tuple[list[int], list[np.ndarray[np.floating]], np.ndarray[np.floating]]:
    """
    Decode a B-spline written by `encode_bspline`.

    Blank lines and lines starting with '#' are skipped. Exactly the declared number
    of coefficient rows is read; any further data line is an error.

    Returns
    -------
    degrees : list[int]
        Degree of every variable.
    knots : list[np.ndarray[np.floating]]
        Knot vector of every variable.
    coefficients : np.ndarray[np.floating]
        Coefficient row of shape (1, number of basis functions).

    Raises
    ------
    FormatError
        On a malformed token, a token count that does not match the declared
        sizes, a coefficient matrix that is not a single row with one entry per
        basis function, an unexpected end of text or trailing data.
    """
    state = _State.NUM_VARIABLES
    num_variables = 0
    knot_length = 0
    degrees: list[int] = []
    knots: list[np.ndarray[np.floating]] = []
    n_rows = n_cols = 0
    rows: list[list[float]] = []
    for line_number, line in enumerate(text.splitlines(), start=1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        tokens = stripped.split()
        if state is _State.NUM_VARIABLES:
            (num_variables,) = _tokens_as(tokens, 1, parse_int, line_number, "the number of variables")
            if num_variables < 1:
                raise FormatError(f"Line {line_number}: number of variables must be positive.")
            state = _State.DEGREE
        elif state is _State.DEGREE:
            p, knot_length = _tokens_as(tokens, 2, parse_int, line_number, "degree and knot vector length")
            if p < 0 or knot_length < 1:
                raise FormatError(f"Line {line_number}: invalid degree {p} or knot vector length {knot_length}.")
            degrees.append(p)
            state = _State.KNOTS
        elif state is _State.KNOTS:
            values = _tokens_as(tokens, knot_length, parse_float, line_number, "the knot vector")
            knots.append(np.array(values, dtype="float"))
            state = _State.DEGREE if len(knots) < num_variables else _State.COEFFICIENTS_SHAPE
        elif state is _State.COEFFICIENTS_SHAPE:
            n_rows, n_cols = _tokens_as(tokens, 2, parse_int, line_number, "the coefficient matrix shape")
            n_funcs = int(np.prod([knot.size - p - 1 for p, knot in zip(degrees, knots)]))
            if n_rows != 1 or n_cols != n_funcs:
                raise FormatError(
                    f"Line {line_number}: coefficient matrix must be 1 x {n_funcs}, "
                    f"got {n_rows} x {n_cols}."
                )
            state = _State.COEFFICIENTS
        elif state is _State.COEFFICIENTS:
            rows.append(_tokens_as(tokens, n_cols, parse_float, line_number, "a coefficient row"))
            if len(rows) == n_rows:
                state = _State.DONE
        else:
            raise FormatError(f"Line {line_number}: unexpected data after the coefficient matrix.")
    if state is not _State.DONE:
        raise FormatError(f"Unexpected end of file while reading {state.name.lower()}.")
    return degrees, knots, np.array(rows, dtype="float")


def save_text(filepath: str, degrees, knots, coefficients):
    with open(filepath, "w", encoding="ascii", newline="\n") as f:
        f.write(encode_bspline(degrees, knots, coefficients))


def load_text(filepath: str):
    """
    Read and decode a text file written by `save_text`.

    Comments may hold any UTF-8 text; numeric tokens must be ASCII.

    Raises
    ------
    FormatError
        If the file is not valid UTF-8 or its content is malformed.
    """
    with open(filepath, "rb") as f:
        raw = f.read()
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise FormatError(f"{filepath} is not a valid UTF-8 text file: {e}") from e
    return decode_bspline(text)
