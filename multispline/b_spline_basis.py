from enum import Enum
from typing import Iterable, Union

import numpy as np
import numba as nb
import scipy.sparse as sps
import matplotlib.pyplot as plt

from multispline.errors import ConstructionError

DEFAULT_MAX_INTERVAL_FRACTION = 0.25


class KnotVectorType(Enum):
    """
    Rule used to build a knot vector from sample abscissae.

    `FREE` repeats the end abscissae `p + 1` times and picks interior knots among
    the abscissae (odd degree) or their midpoints (even degree). `EQUIDISTANT`
    keeps the same number of basis functions but spaces the interior knots evenly.
    """

    FREE = "free"
    EQUIDISTANT = "equidistant"


class BSplineBasis:
    """
    BSpline basis in 1D.

    Holds one knot vector and its degree, evaluates the basis functions and their
    derivatives, and performs the knot vector edits (insertion, refinement,
    regularization, support reduction) that preserve the represented function.
    Each edit returns a sparse transformation matrix `D` of shape
    (new number of functions, old number of functions) such that
    new coefficients = old coefficients @ `D`.T

    Attributes
    ----------
    p : int
        Degree of the polynomials composing the basis.
    knot : np.ndarray[np.floating]
        Non-decreasing knot vector.

    Notes
    -----
    Evaluation uses half-open knot intervals `[knot[j], knot[j + 1][`, except the last
    non-empty interval which is closed on both ends. Zero-length knot spans contribute
    zero (0/0 is taken as 0).

    See Also
    --------
    `scipy.sparse` : Sparse matrix formats used for evaluations and transformations
    """

    p: int
    knot: np.ndarray[np.floating]

    def __init__(self, p: int, knot: Iterable[float]):
        """
        Initialize a B-spline basis with specified degree and knot vector.

        Parameters
        ----------
        p : int
            Degree of the B-spline polynomials. Must be non-negative.
        knot : Iterable[float]
            Knot vector defining the B-spline basis. Must be a non-decreasing sequence
            of at least `2*(p + 1)` real numbers where no value is repeated more than
            `p + 1` times.

        Raises
        ------
        ConstructionError
            If the degree or the knot vector is malformed.

        Examples
        --------
        >>> basis = BSplineBasis(2, [0., 0., 0., 1., 1., 1.])
        >>> basis.count()
        3
        """
        p = int(p)
        knot = np.array(knot, dtype="float")
        if p < 0:
            raise ConstructionError(f"Basis degree must be non-negative, got {p}.")
        if knot.ndim != 1:
            raise ConstructionError("Knot vector must be one dimensional.")
        if knot.size < 2 * (p + 1):
            raise ConstructionError(
                f"A degree {p} basis needs at least {2 * (p + 1)} knots, got {knot.size}."
            )
        if not np.all(np.isfinite(knot)):
            raise ConstructionError("Knot vector contains non finite values.")
        if np.any(np.diff(knot) < 0):
            raise ConstructionError("Knot vector must be non-decreasing.")
        _, counts = np.unique(knot, return_counts=True)
        if np.any(counts > p + 1):
            raise ConstructionError(
                f"Knot multiplicity can not exceed degree + 1 = {p + 1}."
            )
        self.p = p
        self.knot = knot

    @classmethod
    def fromSamples(
        cls,
        x_values: Iterable[float],
        p: int,
        knot_type: KnotVectorType = KnotVectorType.FREE,
    ) -> "BSplineBasis":
        """
        Build a regular basis with one function per distinct sample abscissa.

        Parameters
        ----------
        x_values : Iterable[float]
            Sample abscissae along this dimension. Duplicates are ignored.
        p : int
            Degree of the basis.
        knot_type : KnotVectorType, optional
            Interior knot placement rule. By default, `KnotVectorType.FREE`.

        Returns
        -------
        BSplineBasis
            Basis whose end knots have multiplicity `p + 1` and whose number of basis
            functions equals the number of distinct abscissae.

        Raises
        ------
        ConstructionError
            If there are fewer than `p + 1` distinct abscissae.

        Examples
        --------
        >>> BSplineBasis.fromSamples([0., 1., 2., 3.], 3).knot
        array([0., 0., 0., 0., 3., 3., 3., 3.])
        >>> BSplineBasis.fromSamples([0., 1., 2., 3., 4.], 2).knot
        array([0. , 0. , 0. , 1.5, 2.5, 4. , 4. , 4. ])
        """
        x = np.unique(np.asarray(x_values, dtype="float"))
        n = x.size
        if n < p + 1:
            raise ConstructionError(
                f"At least {p + 1} distinct abscissae are needed for a degree {p} basis, got {n}."
            )
        if knot_type is KnotVectorType.FREE:
            if p % 2 == 1:
                h = (p + 1) // 2
                interior = x[h : n - h]
            else:
                h = p // 2
                interior = 0.5 * (x[h : n - h - 1] + x[h + 1 : n - h])
        elif knot_type is KnotVectorType.EQUIDISTANT:
            interior = np.linspace(x[0], x[-1], n - p + 1)[1:-1]
        else:
            raise ConstructionError(f"Unknown knot vector type {knot_type}.")
        knot = np.concatenate(
            (np.repeat(x[0], p + 1), interior, np.repeat(x[-1], p + 1))
        )
        return cls(p, knot)

    def count(self) -> int:
        """
        Number of basis functions, `knot.size - p - 1`.
        """
        return self.knot.size - self.p - 1

    def lowerBound(self) -> float:
        """
        Lower bound of the support of the basis.
        """
        return float(self.knot[0])

    def upperBound(self) -> float:
        """
        Upper bound of the support of the basis.
        """
        return float(self.knot[-1])

    def multiplicity(self, value: float) -> int:
        """
        Number of times `value` appears in the knot vector.

        Examples
        --------
        >>> basis = BSplineBasis(2, [0., 0., 0., 0.5, 1., 1., 1.])
        >>> basis.multiplicity(0.), basis.multiplicity(0.5), basis.multiplicity(0.7)
        (3, 1, 0)
        """
        return int(np.count_nonzero(self.knot == value))

    def insideSupport(self, x: float) -> bool:
        return self.knot[0] <= x <= self.knot[-1]

    def isRegular(self) -> bool:
        """
        Whether both end knots have multiplicity `p + 1` (open/clamped basis).
        """
        return (
            self.multiplicity(self.knot[0]) == self.p + 1
            and self.multiplicity(self.knot[-1]) == self.p + 1
        )

    def supportedPrInterval(self) -> int:
        """
        Maximum number of basis functions that are nonzero at a given point.
        """
        return self.p + 1

    def copy(self) -> "BSplineBasis":
        return BSplineBasis(self.p, self.knot.copy())

    def N(self, XI: Union[float, Iterable[float]], k: int = 0) -> sps.csr_matrix:
        """
        Compute the k-th derivative of the B-spline basis functions at specified points.

        Parameters
        ----------
        XI : Union[float, Iterable[float]]
            Points at which to evaluate the basis functions.
        k : int, optional
            Order of the derivative to compute. By default, 0.

        Returns
        -------
        DN : sps.csr_matrix
            Sparse matrix of shape (`XI.size`, `count()`). Row `i` holds the k-th
            derivative of every basis function at `XI[i]`. At most `p + 1` entries per
            row are nonzero; rows of points outside the support are empty.

        Notes
        -----
        Values are computed with an explicit bottom-up Cox-de Boor table over increasing
        degree; derivatives raise the degree `p - k` values with the difference formula
        `q/(knot[l + q] - knot[l])*(N_{l, q-1} - ...)`. Derivatives of order greater than
        `p` are zero.

        Examples
        --------
        >>> basis = BSplineBasis(2, [0., 0., 0., 1., 1., 1.])
        >>> basis.N([0., 0.5, 1.]).toarray()
        array([[1.  , 0.  , 0.  ],
               [0.25, 0.5 , 0.25],
               [0.  , 0.  , 1.  ]])
        >>> basis.N([0., 0.5, 1.], k=1).toarray()
        array([[-2.,  2.,  0.],
               [-1.,  0.,  1.],
               [ 0., -2.,  2.]])
        """
        if k < 0:
            raise ValueError("Derivative order must be non-negative.")
        XI = np.atleast_1d(np.asarray(XI, dtype=np.float64)).ravel()
        vals, row, col = _DN(self.p, self.knot, XI, int(k))
        return sps.csr_matrix((vals, (row, col)), shape=(XI.size, self.count()))

    def greville_abscissa(self) -> np.ndarray[np.floating]:
        """
        Compute the knot averages (Greville abscissa) of the basis functions.

        For the i-th basis function the abscissa is
        (knot[i+1] + knot[i+2] + ... + knot[i+p]) / p.
        A degree 0 function uses the midpoint of its knot interval instead.

        Returns
        -------
        greville : np.ndarray[np.floating]
            Array of size `count()`.

        Examples
        --------
        >>> BSplineBasis(2, [0, 0, 0, 0.5, 1, 1, 1]).greville_abscissa()
        array([0.  , 0.25, 0.75, 1.  ])
        """
        if self.p == 0:
            return 0.5 * (self.knot[:-1] + self.knot[1:])
        return np.convolve(self.knot[1:-1], np.ones(self.p), "valid") / self.p

    def transformationMatrix(self, new_knot: np.ndarray[np.floating]) -> sps.csr_matrix:
        """
        Compute the knot insertion matrix from the current knot vector to `new_knot`.

        `new_knot` must be a refinement of the current knot vector (it contains every
        current knot with at least the same multiplicity). The basis is not modified.

        Parameters
        ----------
        new_knot : np.ndarray[np.floating]
            Refined knot vector.

        Returns
        -------
        D : sps.csr_matrix
            Matrix of shape (`new_knot.size - p - 1`, `count()`) such that
            new coefficients = old coefficients @ `D`.T

        Notes
        -----
        Row `i` is computed with the Oslo algorithm: the same triangular recursion as
        the evaluation, where the level `q` uses the abscissa `new_knot[i + q]`.
        """
        new_knot = np.asarray(new_knot, dtype=np.float64)
        vals, row, col = _oslo_matrix(self.p, self.knot, new_knot)
        new_n = new_knot.size - self.p - 1
        return sps.csr_matrix((vals, (row, col)), shape=(new_n, self.count()))

    def knotInsertion(
        self, knots_to_add: Union[float, Iterable[float]]
    ) -> Union[sps.csr_matrix, None]:
        """
        Insert knots into the B-spline basis and return the transformation matrix.

        All knots are inserted at once, so a single matrix is computed whatever the
        number of inserted knots.

        Parameters
        ----------
        knots_to_add : Union[float, Iterable[float]]
            Knot values to insert. A value repeated `r` times is inserted with
            multiplicity `r`.

        Returns
        -------
        D : Union[sps.csr_matrix, None]
            Transformation matrix such that new coefficients = old coefficients @ `D`.T,
            or `None` if the insertion is rejected: a knot lies outside
            `[lowerBound(), upperBound()]` or a resulting multiplicity exceeds `p + 1`.
            A rejected insertion leaves the basis untouched.

        Examples
        --------
        >>> basis = BSplineBasis(2, np.array([0, 0, 0, 1, 1, 1], dtype='float'))
        >>> basis.knotInsertion([0.33, 0.67]).toarray()
        array([[1.    , 0.    , 0.    ],
               [0.67  , 0.33  , 0.    ],
               [0.2211, 0.5578, 0.2211],
               [0.    , 0.33  , 0.67  ],
               [0.    , 0.    , 1.    ]])
        >>> basis.knot
        array([0.  , 0.  , 0.  , 0.33, 0.67, 1.  , 1.  , 1.  ])
        >>> basis.knotInsertion([0.5, 0.5, 0.5, 0.5]) is None
        True
        """
        knots_to_add = np.atleast_1d(np.asarray(knots_to_add, dtype="float")).ravel()
        if knots_to_add.size == 0:
            return sps.identity(self.count(), format="csr")
        if np.any(knots_to_add < self.knot[0]) or np.any(knots_to_add > self.knot[-1]):
            return None
        new_knot = np.sort(np.concatenate((self.knot, knots_to_add)))
        values, counts = np.unique(knots_to_add, return_counts=True)
        for value, c in zip(values, counts):
            if self.multiplicity(value) + c > self.p + 1:
                return None
        D = self.transformationMatrix(new_knot)
        self.knot = new_knot
        return D

    def refinedKnots(
        self, max_interval_fraction: float = DEFAULT_MAX_INTERVAL_FRACTION
    ) -> np.ndarray[np.floating]:
        """
        Knot vector obtained by bisecting long knot intervals.

        Every non-empty interval longer than `max_interval_fraction` times the support
        length receives its midpoint, repeatedly, until no interval is too long.
        The basis is not modified.

        Parameters
        ----------
        max_interval_fraction : float, optional
            Largest allowed interval length relative to the support, in `]0, 1]`.
            By default, 0.25.

        Returns
        -------
        knot : np.ndarray[np.floating]
            Refined knot vector (equal to the current one if nothing is too long).
        """
        if not 0 < max_interval_fraction <= 1:
            raise ValueError("max_interval_fraction must lie in ]0, 1].")
        knot = self.knot.copy()
        max_length = max_interval_fraction * (knot[-1] - knot[0])
        if max_length <= 0:
            return knot
        while True:
            knot_uniq = np.unique(knot)
            too_long = np.diff(knot_uniq) > max_length
            if not np.any(too_long):
                return knot
            midpoints = 0.5 * (knot_uniq[:-1][too_long] + knot_uniq[1:][too_long])
            knot = np.sort(np.concatenate((knot, midpoints)))

    def knotRefinement(
        self, max_interval_fraction: float = DEFAULT_MAX_INTERVAL_FRACTION
    ) -> Union[sps.csr_matrix, None]:
        """
        Refine the knot vector with `refinedKnots` and return one insertion matrix.

        Returns
        -------
        D : Union[sps.csr_matrix, None]
            Transformation matrix for all the inserted midpoints, or `None` if
            `max_interval_fraction` is invalid.

        Examples
        --------
        >>> basis = BSplineBasis(1, [0., 0., 1., 1.])
        >>> D = basis.knotRefinement(0.5)
        >>> basis.knot
        array([0. , 0. , 0.5, 1. , 1. ])
        """
        if not 0 < max_interval_fraction <= 1:
            return None
        new_knot = self.refinedKnots(max_interval_fraction)
        if new_knot.size == self.knot.size:
            return sps.identity(self.count(), format="csr")
        D = self.transformationMatrix(new_knot)
        self.knot = new_knot
        return D

    def regularizationKnots(
        self, lb: float, ub: float
    ) -> Union[np.ndarray[np.floating], None]:
        """
        Knots to insert so that `lb` and `ub` both reach multiplicity `p + 1`.

        Returns
        -------
        knots_to_add : Union[np.ndarray[np.floating], None]
            Possibly empty array of knots, or `None` if a bound lies outside the support.
        """
        if lb < self.knot[0] or ub > self.knot[-1] or ub < lb:
            return None
        target = self.p + 1
        n_lb = max(target - self.multiplicity(lb), 0)
        n_ub = max(target - self.multiplicity(ub), 0) if ub != lb else 0
        return np.concatenate((np.repeat(float(lb), n_lb), np.repeat(float(ub), n_ub)))

    def reduceSupport(self, lb: float, ub: float) -> Union[sps.csr_matrix, None]:
        """
        Drop the basis functions whose support does not meet `]lb, ub[`.

        The kept functions form a contiguous run; the knot vector is truncated to the
        knots defining them, so each kept function is unchanged.

        Parameters
        ----------
        lb : float
            Lower bound of the retained region.
        ub : float
            Upper bound of the retained region.

        Returns
        -------
        S : Union[sps.csr_matrix, None]
            Selection matrix of shape (new number of functions, `count()`) such that
            new coefficients = old coefficients @ `S`.T, or `None` if `ub <= lb`, a bound
            lies outside the support or the reduced basis would be too small.
            A rejected reduction leaves the basis untouched.

        Examples
        --------
        >>> basis = BSplineBasis(1, [0., 0., 1., 2., 3., 3.])
        >>> basis.reduceSupport(1., 2.).toarray()
        array([[0., 1., 0., 0.],
               [0., 0., 1., 0.]])
        >>> basis.knot
        array([0., 1., 2., 3.])
        """
        if not ub > lb or lb < self.knot[0] or ub > self.knot[-1]:
            return None
        n = self.count()
        keep = (self.knot[:n] < ub) & (self.knot[self.p + 1 :] > lb)
        kept = np.flatnonzero(keep)
        if kept.size == 0:
            return None
        first, last = kept[0], kept[-1]
        new_knot = self.knot[first : last + self.p + 2]
        if new_knot.size < 2 * (self.p + 1):
            return None
        new_n = last - first + 1
        S = sps.csr_matrix(
            (np.ones(new_n), (np.arange(new_n), np.arange(first, last + 1))),
            shape=(new_n, n),
        )
        self.knot = new_knot.copy()
        return S

    def to_dict(self) -> dict:
        """
        Returns a dictionary representation of the BSplineBasis object.
        """
        return {"p": self.p, "knot": self.knot.tolist()}

    @classmethod
    def from_dict(cls, data: dict) -> "BSplineBasis":
        """
        Creates a BSplineBasis object from a dictionary representation.
        """
        return cls(data["p"], data["knot"])

    def plotN(self, k: int = 0, show: bool = True):
        """
        Plot the B-spline basis functions or their derivatives over the support.

        Parameters
        ----------
        k : int, optional
            Order of derivative to plot. By default, 0.
        show : bool, optional
            Whether to display the plot immediately. Can be useful to add more stuff to
            the plot. By default, True.

        Notes
        -----
        Each function is only drawn over its own support; the legend is hidden when
        there are more than 10 basis functions.
        """
        knot_uniq = np.unique(self.knot)
        n_eval_per_elem = max(500 // knot_uniq.size, 2)
        XI = np.hstack(
            [np.linspace(a, b, n_eval_per_elem) for a, b in zip(knot_uniq[:-1], knot_uniq[1:])]
        )
        DN = self.N(XI, k).toarray()
        for idx in range(self.count()):
            inside = (XI >= self.knot[idx]) & (XI <= self.knot[idx + self.p + 1])
            label = "$N_{" + str(idx) + "}" + ("'" * k) + "(x)$"
            plt.plot(XI[inside], DN[inside, idx], label=label)
        for xi in knot_uniq:
            plt.axvline(xi, color="gray", linestyle=":", linewidth=0.8)
        plt.xlabel("$x$")
        if self.count() <= 10:
            plt.legend(loc="best")
        if show:
            plt.show()


# %% fast functions for evaluation


@nb.njit(nb.int64(nb.float64[:], nb.float64), cache=True)
def _findElem(knot, xi):
    """
    Find `mu` so that `xi` belongs to [ `knot`[`mu`], `knot`[`mu` + 1] [.

    The last non-empty interval is closed on the right.

    Parameters
    ----------
    knot : numpy.array of float
        Knot vector of the BSpline basis.
    xi : float
        Value in the parametric space.

    Returns
    -------
    mu : int
        Index of the first knot of the interval containing `xi`, or -1 if `xi` is
        outside [ `knot`[0], `knot`[-1] ] or NaN.
    """
    m = knot.size - 1
    if xi != xi or xi < knot[0] or xi > knot[m]:
        return -1
    # last index with knot[idx] <= xi
    lo = 0
    hi = m + 1
    while hi - lo > 1:
        mid = (lo + hi) // 2
        if knot[mid] <= xi:
            lo = mid
        else:
            hi = mid
    mu = lo
    if mu > m - 1:
        mu = m - 1
    while mu > 0 and knot[mu] == knot[mu + 1]:
        mu -= 1
    return mu


@nb.njit(cache=True)
def _triangle(knot, mu, xs, n_val, n_der, N):
    """
    Fill `N` with the nonzero functions of the bottom-up Cox-de Boor table.

    On exit, `N[r]` holds the function of index `mu - q + r` for the final degree
    `q = n_val + n_der`. The first `n_val` levels are value levels, level `q` being
    evaluated at `xs[q - 1]`; the last `n_der` levels apply the derivative formula.
    Functions that do not exist on `knot` are kept at zero.

    Parameters
    ----------
    knot : numpy.array of float
        Knot vector.
    mu : int
        Index of the knot interval.
    xs : numpy.array of float
        Abscissa of each value level.
    n_val : int
        Number of value levels.
    n_der : int
        Number of derivative levels.
    N : numpy.array of float
        Work array of size at least `n_val + n_der + 1`.
    """
    m = knot.size - 1
    N[:] = 0.0
    if knot[mu] != knot[mu + 1]:
        N[0] = 1.0
    x = 0.0
    for q in range(1, n_val + n_der + 1):
        derivative = q > n_val
        if not derivative:
            x = xs[q - 1]
        for r in range(q, -1, -1):
            l = mu - q + r
            if l < 0 or l + q + 1 > m:
                N[r] = 0.0
                continue
            v = 0.0
            if r >= 1:
                d = knot[l + q] - knot[l]
                if d != 0.0:
                    if derivative:
                        v += q / d * N[r - 1]
                    else:
                        v += (x - knot[l]) / d * N[r - 1]
            if r <= q - 1:
                d = knot[l + q + 1] - knot[l + 1]
                if d != 0.0:
                    if derivative:
                        v -= q / d * N[r]
                    else:
                        v += (knot[l + q + 1] - x) / d * N[r]
            N[r] = v


@nb.njit(cache=True)
def _DN(p, knot, XI, k):
    """
    Compute the `k`-th derivative of the BSpline basis functions for a set
    of values in the parametric space.

    Parameters
    ----------
    p : int
        Degree of the polynomials composing the basis.
    knot : numpy.array of float
        Knot vector of the BSpline basis.
    XI : numpy.array of float
        Values in the parametric space at which the BSpline is evaluated.
    k : int
        `k`-th derivative of the BSpline evaluated.

    Returns
    -------
    (vals, row, col) : (numpy.array of float, numpy.array of int, numpy.array of int)
        Values and indices of the `k`-th derivative matrix of the BSpline
        basis functions in the columns for each value of `XI` in the rows.
    """
    n = knot.size - p - 1
    nb_val_max = XI.size * (p + 1)
    vals = np.empty(nb_val_max, dtype=np.float64)
    row = np.empty(nb_val_max, dtype=np.int64)
    col = np.empty(nb_val_max, dtype=np.int64)
    if k > p:
        return vals[:0], row[:0], col[:0]
    N = np.empty(p + 1, dtype=np.float64)
    xs = np.empty(p, dtype=np.float64)
    nnz = 0
    for i_xi in range(XI.size):
        xi = XI[i_xi]
        mu = _findElem(knot, xi)
        if mu < 0:
            continue
        xs[:] = xi
        _triangle(knot, mu, xs, p - k, k, N)
        for r in range(p + 1):
            i = mu - p + r
            if i < 0 or i >= n:
                continue
            vals[nnz] = N[r]
            row[nnz] = i_xi
            col[nnz] = i
            nnz += 1
    return vals[:nnz], row[:nnz], col[:nnz]


@nb.njit(cache=True)
def _oslo_matrix(p, knot, new_knot):
    """
    Compute the nonzero entries of the knot insertion matrix from `knot` to
    `new_knot` with the Oslo algorithm.

    Parameters
    ----------
    p : int
        Degree of the basis.
    knot : numpy.array of float
        Current knot vector.
    new_knot : numpy.array of float
        Refined knot vector.

    Returns
    -------
    (vals, row, col) : (numpy.array of float, numpy.array of int, numpy.array of int)
        Entries of the (new number of functions, old number of functions) matrix.
    """
    n = knot.size - p - 1
    new_n = new_knot.size - p - 1
    nb_val_max = new_n * (p + 1)
    vals = np.empty(nb_val_max, dtype=np.float64)
    row = np.empty(nb_val_max, dtype=np.int64)
    col = np.empty(nb_val_max, dtype=np.int64)
    N = np.empty(p + 1, dtype=np.float64)
    nnz = 0
    for i in range(new_n):
        mu = _findElem(knot, new_knot[i])
        if mu < 0:
            continue
        _triangle(knot, mu, new_knot[i + 1 : i + p + 1], p, 0, N)
        for r in range(p + 1):
            j = mu - p + r
            if j < 0 or j >= n or N[r] == 0.0:
                continue
            vals[nnz] = N[r]
            row[nnz] = i
            col[nnz] = j
            nnz += 1
    return vals[:nnz], row[:nnz], col[:nnz]
