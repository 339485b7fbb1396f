import numpy as np
import pytest

from multispline import FormatError
from multispline.save_utils import (format_float, parse_int, parse_float, encode_bspline,
                                    decode_bspline, save_text, load_text)


TEXT = ("# Saved BSpline\n"
        "# Number of bases: 1\n"
        "1\n"
        "1 4\n"
        "0 0 1 1\n"
        "# Coefficient matrix:\n"
        "1 2\n"
        "0.5 -2\n")

def test_format_float():
    values = [0.1, 1/3, -2.5e-300, 1e22, 3.0]
    assert (format_float(3.0)=="3"
            and format_float(0.1)=="0.10000000000000001"
            and all(float(format_float(v))==v for v in values))

def test_parse_int():
    assert parse_int("42")==42 and parse_int("-7")==-7 and parse_int("+3")==3
    for token in ["1.5", "abc", "", "2147483648", "-2147483649", "1e3"]:
        with pytest.raises(FormatError):
            parse_int(token)

def test_parse_float():
    assert (parse_float("1e-3")==1e-3
            and parse_float("-.5")==-0.5
            and parse_float("7.")==7
            and parse_float("inf")==np.inf
            and np.isnan(parse_float("nan")))
    for token in ["abc", "1,5", "1e400", "0x10", ""]:
        with pytest.raises(FormatError):
            parse_float(token)

def test_encode_bspline():
    assert encode_bspline([1], [np.array([0., 0., 1., 1.])], np.array([[0.5, -2.]]))==TEXT

def test_decode_bspline():
    degrees, knots, coefficients = decode_bspline(TEXT)
    assert (degrees==[1]
            and len(knots)==1 and np.all(knots[0]==[0, 0, 1, 1])
            and coefficients.shape==(1, 2) and np.all(coefficients==[[0.5, -2]]))

def test_decode_bspline_two_variables():
    knots = [np.array([0, 0, 0, 0.3, 1, 1, 1]), np.array([-1, -1, 1/3, 2, 2])]
    coefficients = np.linspace(0, 1, 12)[None]
    degrees, decoded_knots, decoded_coefficients = decode_bspline(
        encode_bspline([2, 1], knots, coefficients))
    assert (degrees==[2, 1]
            and all(np.all(k==l) for k, l in zip(knots, decoded_knots))
            and np.all(decoded_coefficients==coefficients))

def test_decode_bspline_trailing_comments():
    degrees, _, _ = decode_bspline(TEXT + "\n# end\n\n")
    assert degrees==[1]

@pytest.mark.parametrize("text", [
    "",                                          # empty
    "1\n1 4\n0 0 1 1\n",                         # no coefficients
    "1\n1 4\n0 0 1 1\n1 2\n0.5\n",               # short coefficient row
    "1\n1 4\n0 0 1\n1 2\n0.5 -2\n",              # short knot vector
    "1\n1 4\n0 0 one 1\n1 2\n0.5 -2\n",          # bad token
    "1\n1.5 4\n0 0 1 1\n1 2\n0.5 -2\n",          # bad degree
    "1\n1 4\n0 0 1 1\n1 3\n0.5 -2 1\n",          # coefficient count mismatch
    "1\n1 4\n0 0 1 1\n2 2\n0.5 -2\n1 1\n",       # several coefficient rows
    "1\n1 4\n0 0 1 1\n1 2\n0.5 -2\n7\n",         # trailing data
    "0\n",                                       # no variable
    "\u0661\n1 4\n0 0 1 1\n1 2\n0 1\n",          # non ASCII digit
    "1\n1 4\n0 0 1 \u0661\n1 2\n0 1\n",          # non ASCII digit in a knot
])
def test_decode_bspline_malformed(text):
    with pytest.raises(FormatError):
        decode_bspline(text)

def test_save_text_load_text(tmp_path):
    filepath = str(tmp_path / "spline.txt")
    save_text(filepath, [1], [np.array([0., 0., 1., 1.])], np.array([[0.5, -2.]]))
    with open(filepath) as f:
        content = f.read()
    degrees, knots, coefficients = load_text(filepath)
    assert content==TEXT and degrees==[1] and np.all(coefficients==[[0.5, -2]])

def test_load_text_non_ascii_comment(tmp_path):
    filepath = tmp_path / "spline.txt"
    filepath.write_text("# Saved BSpline by José\n" + TEXT, encoding="utf-8")
    degrees, knots, coefficients = load_text(str(filepath))
    assert degrees==[1] and np.all(knots[0]==[0, 0, 1, 1]) and np.all(coefficients==[[0.5, -2]])

def test_load_text_undecodable(tmp_path):
    filepath = tmp_path / "spline.txt"
    filepath.write_bytes(b"\xff\xfe\x00garbage")
    with pytest.raises(FormatError):
        load_text(str(filepath))
