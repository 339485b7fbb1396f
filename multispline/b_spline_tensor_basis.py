from typing import Iterable, Union

import numpy as np
import scipy.sparse as sps

from multispline.b_spline_basis import BSplineBasis, DEFAULT_MAX_INTERVAL_FRACTION
from multispline.errors import ConstructionError
from multispline.tensor_products import kron_chain, kron_expand, row_wise_kron_chain


class BSplineTensorBasis:
    """
    Tensor-product B-spline basis in `NPa` dimensions.

    The basis functions are all the products of one univariate basis function per
    dimension. They are indexed with a mixed-radix index where the first dimension
    varies slowest, i.e. the ordering of `scipy.sparse.kron(D_0, D_1, ...)`. Every
    evaluation and transformation matrix of this class uses that ordering.

    Knot vector edits return a transformation matrix `D` of shape
    (new number of functions, old number of functions) such that
    new coefficients = old coefficients @ `D`.T, or `None` when the edit is
    rejected. A rejected edit leaves the basis untouched.

    Attributes
    ----------
    NPa : int
        Number of variables.
    bases : list[BSplineBasis]
        Univariate basis of every dimension.
    """

    NPa: int
    bases: list[BSplineBasis]

    def __init__(self, bases: Iterable[BSplineBasis]):
        """
        Parameters
        ----------
        bases : Iterable[BSplineBasis]
            One univariate basis per variable.

        Raises
        ------
        ConstructionError
            If no basis is given.
        """
        self.bases = list(bases)
        if len(self.bases) == 0:
            raise ConstructionError("A tensor basis needs at least one dimension.")
        self.NPa = len(self.bases)

    @classmethod
    def from_knots(
        cls, knots: Iterable[Iterable[float]], degrees: Iterable[int]
    ) -> "BSplineTensorBasis":
        """
        Create the tensor basis from one knot vector and one degree per dimension.

        Examples
        --------
        >>> basis = BSplineTensorBasis.from_knots([[0, 0, 1, 1], [0, 0, 0, 1, 1, 1]], [1, 2])
        >>> basis.getNbFuncs()
        array([2, 3])
        >>> basis.numBasisFunctions()
        6
        """
        knots = list(knots)
        degrees = list(degrees)
        if len(knots) != len(degrees):
            raise ConstructionError(
                f"Got {len(knots)} knot vectors but {len(degrees)} degrees."
            )
        return cls([BSplineBasis(p, knot) for p, knot in zip(degrees, knots)])

    def copy(self) -> "BSplineTensorBasis":
        return BSplineTensorBasis([basis.copy() for basis in self.bases])

    def getDegrees(self) -> np.ndarray[np.integer]:
        return np.array([basis.p for basis in self.bases], dtype="int")

    def getKnots(self) -> list[np.ndarray[np.floating]]:
        return [basis.knot.copy() for basis in self.bases]

    def getNbFuncs(self) -> np.ndarray[np.integer]:
        """
        Number of basis functions of every dimension.
        """
        return np.array([basis.count() for basis in self.bases], dtype="int")

    def numBasisFunctions(self) -> int:
        return int(np.prod(self.getNbFuncs()))

    def getLowerBounds(self) -> np.ndarray[np.floating]:
        return np.array([basis.lowerBound() for basis in self.bases], dtype="float")

    def getUpperBounds(self) -> np.ndarray[np.floating]:
        return np.array([basis.upperBound() for basis in self.bases], dtype="float")

    def getKnotMultiplicity(self, dim: int, value: float) -> int:
        return self.bases[dim].multiplicity(value)

    def supportedPrInterval(self) -> int:
        """
        Maximum number of tensor basis functions that are nonzero at a point.
        """
        return int(np.prod([basis.supportedPrInterval() for basis in self.bases]))

    def insideSupport(self, x: Iterable[float]) -> bool:
        """
        Whether `x` has `NPa` coordinates, each inside the support of its dimension.
        """
        x = np.asarray(x, dtype="float").ravel()
        if x.size != self.NPa:
            return False
        return all(basis.insideSupport(xi) for basis, xi in zip(self.bases, x))

    def _rows(self, x: np.ndarray[np.floating], k: Iterable[int]) -> list[sps.csr_matrix]:
        return [basis.N(xi, k=ki) for basis, xi, ki in zip(self.bases, x, k)]

    def eval(self, x: Iterable[float]) -> sps.csr_matrix:
        """
        Evaluate every tensor basis function at one point.

        Parameters
        ----------
        x : Iterable[float]
            Point with `NPa` coordinates.

        Returns
        -------
        values : sps.csr_matrix
            Row of shape (1, `numBasisFunctions()`) with at most
            `supportedPrInterval()` nonzeros.

        Examples
        --------
        >>> basis = BSplineTensorBasis.from_knots([[0, 0, 1, 1], [0, 0, 1, 1]], [1, 1])
        >>> basis.eval([0.25, 0.5]).toarray()
        array([[0.375, 0.375, 0.125, 0.125]])
        """
        x = np.asarray(x, dtype="float").ravel()
        return row_wise_kron_chain(self._rows(x, [0] * self.NPa))

    def eval_points(self, X: np.ndarray[np.floating], k: Union[Iterable[int], None] = None) -> sps.csr_matrix:
        """
        Evaluate the tensor basis (or a mixed derivative of it) at many points.

        Parameters
        ----------
        X : np.ndarray[np.floating]
            Points of shape (n_points, `NPa`).
        k : Union[Iterable[int], None], optional
            Derivative order along each dimension. If `None`, values are computed.
            By default, None.

        Returns
        -------
        values : sps.csr_matrix
            Matrix of shape (n_points, `numBasisFunctions()`), one row per point.
        """
        X = np.asarray(X, dtype="float").reshape((-1, self.NPa))
        if k is None:
            k = [0] * self.NPa
        return row_wise_kron_chain(
            [basis.N(X[:, idx], k=ki) for idx, (basis, ki) in enumerate(zip(self.bases, k))]
        )

    def evalBasisJacobian(self, x: Iterable[float]) -> sps.csc_matrix:
        """
        First derivatives of every tensor basis function at one point.

        Returns
        -------
        J : sps.csc_matrix
            Matrix of shape (`numBasisFunctions()`, `NPa`). Column `i` is the tensor
            product of the derivative row of dimension `i` with the value rows of the
            other dimensions.
        """
        x = np.asarray(x, dtype="float").ravel()
        values = self._rows(x, [0] * self.NPa)
        derivatives = self._rows(x, [1] * self.NPa)
        columns = []
        for i in range(self.NPa):
            rows = list(values)
            rows[i] = derivatives[i]
            columns.append(row_wise_kron_chain(rows))
        return sps.vstack(columns).T.tocsc()

    def evalBasisHessian(self, x: Iterable[float]) -> sps.csr_matrix:
        """
        Second derivatives of every tensor basis function at one point.

        Returns
        -------
        DB : sps.csr_matrix
            Matrix of shape (`NPa`*`numBasisFunctions()`, `NPa`). Block row `i`,
            column `j` holds the tensor product with derivative orders
            `(i == d) + (j == d)` along every dimension `d`, so that
            `kron(I, coefficients) @ DB` is the Hessian.

        Notes
        -----
        The value, first and second derivative rows of each dimension are computed
        once; the symmetric blocks are shared.
        """
        x = np.asarray(x, dtype="float").ravel()
        dkrows = [self._rows(x, [k] * self.NPa) for k in range(3)]
        blocks = {}
        for i in range(self.NPa):
            for j in range(i, self.NPa):
                rows = []
                for d in range(self.NPa):
                    rows.append(dkrows[int(i == d) + int(j == d)][d])
                blocks[i, j] = blocks[j, i] = row_wise_kron_chain(rows).T
        return sps.bmat(
            [[blocks[i, j] for j in range(self.NPa)] for i in range(self.NPa)],
            format="csr",
        )

    def insertKnots(
        self, tau: float, dim: int, multiplicity: int = 1
    ) -> Union[sps.csr_matrix, None]:
        """
        Insert `tau` with `multiplicity` into the knot vector of dimension `dim`.

        Returns
        -------
        D : Union[sps.csr_matrix, None]
            `kron(I_before, D_dim, I_after)`, or `None` if `dim` is invalid, `tau` is
            outside the support or its multiplicity would exceed the degree + 1.

        Examples
        --------
        >>> basis = BSplineTensorBasis.from_knots([[0, 0, 1, 1], [0, 0, 1, 1]], [1, 1])
        >>> basis.insertKnots(0.5, 0).shape
        (6, 4)
        >>> basis.insertKnots(0.5, 0, 2) is None
        True
        """
        if not 0 <= dim < self.NPa or multiplicity < 0:
            return None
        D = self.bases[dim].knotInsertion(np.repeat(float(tau), int(multiplicity)))
        if D is None:
            return None
        return kron_expand(D, dim, self.getNbFuncs())

    def refineKnots(
        self, max_interval_fraction: float = DEFAULT_MAX_INTERVAL_FRACTION
    ) -> Union[sps.csr_matrix, None]:
        """
        Bisect the long knot intervals of every dimension.

        Returns
        -------
        D : Union[sps.csr_matrix, None]
            One composed matrix `kron(D_0, ..., D_{NPa-1})` for the whole refinement, or
            `None` if `max_interval_fraction` is not in `]0, 1]`.
        """
        if not 0 < max_interval_fraction <= 1:
            return None
        return kron_chain(
            [basis.knotRefinement(max_interval_fraction) for basis in self.bases]
        )

    def regularizeKnots(
        self, lb: Iterable[float], ub: Iterable[float]
    ) -> Union[sps.csr_matrix, None]:
        """
        Raise the multiplicity of `lb[i]` and `ub[i]` to `p_i + 1` in every dimension.

        The missing knots of a dimension are inserted in one batch. Every dimension is
        checked before any knot vector is modified.

        Returns
        -------
        D : Union[sps.csr_matrix, None]
            Composed insertion matrix, or `None` if the bounds have the wrong size or a
            bound lies outside the support.
        """
        lb = np.asarray(lb, dtype="float").ravel()
        ub = np.asarray(ub, dtype="float").ravel()
        if lb.size != self.NPa or ub.size != self.NPa:
            return None
        to_add = [
            basis.regularizationKnots(lb[i], ub[i]) for i, basis in enumerate(self.bases)
        ]
        if any(knots is None for knots in to_add):
            return None
        bases = [basis.copy() for basis in self.bases]
        Ds = [basis.knotInsertion(knots) for basis, knots in zip(bases, to_add)]
        if any(D is None for D in Ds):
            return None
        self.bases = bases
        return kron_chain(Ds)

    def reduceSupport(
        self, lb: Iterable[float], ub: Iterable[float]
    ) -> Union[sps.csr_matrix, None]:
        """
        Drop the tensor basis functions whose support does not meet the box `[lb, ub]`.

        Returns
        -------
        S : Union[sps.csr_matrix, None]
            Composed selection matrix, or `None` if a dimension can not be reduced
            (degenerate bounds, bounds outside the support, empty result). Every
            dimension is checked before any knot vector is modified.
        """
        lb = np.asarray(lb, dtype="float").ravel()
        ub = np.asarray(ub, dtype="float").ravel()
        if lb.size != self.NPa or ub.size != self.NPa:
            return None
        bases = [basis.copy() for basis in self.bases]
        Ss = [basis.reduceSupport(lb[i], ub[i]) for i, basis in enumerate(bases)]
        if any(S is None for S in Ss):
            return None
        self.bases = bases
        return kron_chain(Ss)

    def to_dict(self) -> dict:
        return {"bases": [basis.to_dict() for basis in self.bases]}

    @classmethod
    def from_dict(cls, data: dict) -> "BSplineTensorBasis":
        return cls([BSplineBasis.from_dict(basis) for basis in data["bases"]])
