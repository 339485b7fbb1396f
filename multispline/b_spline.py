import json
import pickle
from enum import Enum
from typing import Iterable

import numpy as np
import scipy.sparse as sps
from tqdm import tqdm

from multispline import linear_solvers
from multispline.b_spline_basis import (
    BSplineBasis,
    KnotVectorType,
    DEFAULT_MAX_INTERVAL_FRACTION,
)
from multispline.b_spline_tensor_basis import BSplineTensorBasis
from multispline.errors import ConstructionError, DomainError, FormatError, StructuralError
from multispline.linear_solvers import SolverStrategy, MAX_DENSE_EQUATIONS
from multispline.save_utils import load_text, save_text


class BSplineType(Enum):
    """
    Degree of the basis built when fitting samples.
    """

    LINEAR = 1
    QUADRATIC_FREE = 2
    CUBIC_FREE = 3

    @property
    def degree(self) -> int:
        return self.value


class BSpline:
    """
    Scalar tensor-product B-spline surface in `NPa` variables.

    The surface owns its tensor basis, the coefficient row (weight of every tensor
    basis function) and the knot averages (abscissa of every control point). The
    three are always updated together: every structural edit is computed on a copy of
    the basis and committed only once it has fully succeeded.

    Attributes
    ----------
    NPa : int
        Number of variables.
    basis : BSplineTensorBasis
        Tensor-product basis.
    coefficients : np.ndarray[np.floating]
        Coefficient row of shape (1, `basis.numBasisFunctions()`).
    knotaverages : np.ndarray[np.floating]
        Control point abscissae of shape (`NPa`, `basis.numBasisFunctions()`).

    Notes
    -----
    The control points are the knot averages stacked over the coefficients, a matrix
    of shape (`NPa` + 1, number of basis functions).

    See Also
    --------
    `BSplineTensorBasis` : Tensor-product basis and knot vector edits
    `BSplineBasis` : One-dimensional B-spline basis
    """

    NPa: int
    basis: BSplineTensorBasis
    coefficients: np.ndarray[np.floating]
    knotaverages: np.ndarray[np.floating]

    def __init__(
        self,
        coefficients: Iterable[float],
        knots: Iterable[Iterable[float]],
        degrees: Iterable[int],
    ):
        """
        Create a B-spline from explicit coefficients, knot vectors and degrees.

        Parameters
        ----------
        coefficients : Iterable[float]
            One coefficient per tensor basis function, first variable varying slowest.
            A flat array or a single row are accepted.
        knots : Iterable[Iterable[float]]
            Knot vector of every variable.
        degrees : Iterable[int]
            Degree of every variable.

        Raises
        ------
        ConstructionError
            If the knot vectors or degrees are malformed, or if the number of
            coefficients does not match the number of basis functions.

        Examples
        --------
        Bilinear surface f(x, y) = x*y over [0, 1]x[0, 1]:
        >>> spline = BSpline([0., 0., 0., 1.], [[0, 0, 1, 1], [0, 0, 1, 1]], [1, 1])
        >>> spline.evaluate([0.5, 0.5])
        0.25
        """
        basis = BSplineTensorBasis.from_knots(knots, degrees)
        coefficients = np.asarray(coefficients, dtype="float")
        if coefficients.ndim == 1:
            coefficients = coefficients.reshape((1, -1))
        self._setState(basis, coefficients, self._computeKnotAverages(basis))

    @classmethod
    def _from_parts(
        cls,
        basis: BSplineTensorBasis,
        coefficients: np.ndarray[np.floating],
        knotaverages: np.ndarray[np.floating],
    ) -> "BSpline":
        self = cls.__new__(cls)
        self._setState(basis, coefficients, knotaverages)
        return self

    def _setState(self, basis, coefficients, knotaverages):
        self.basis = basis
        self.NPa = basis.NPa
        self.coefficients = np.asarray(coefficients, dtype="float")
        self.knotaverages = np.asarray(knotaverages, dtype="float")
        self.checkControlPoints()

    @classmethod
    def fitFromSamples(
        cls,
        samples,
        spline_type: BSplineType = BSplineType.CUBIC_FREE,
        knot_type: KnotVectorType = KnotVectorType.FREE,
        solver: SolverStrategy = SolverStrategy.AUTO,
        max_dense_equations: int = MAX_DENSE_EQUATIONS,
        verbose: bool = False,
    ) -> "BSpline":
        """
        Interpolate a complete grid of samples.

        One basis per variable is built from the distinct abscissae of that variable,
        with as many basis functions as abscissae. The control points solve
        `A @ C = B`, where row `i` of `A` holds the tensor basis evaluated at sample
        `i` and `B` stacks the sample abscissae (giving the knot averages) and the
        sample values (giving the coefficients). Both right-hand sides share one
        factorization of `A`.

        Parameters
        ----------
        samples : DataTable
            Sample table. Any object exposing `isGridComplete()`, `getNumVariables()`,
            `getNumSamples()` and iterating over `(x, y)` pairs in a stable order works.
        spline_type : BSplineType, optional
            Degree of the basis. By default, `BSplineType.CUBIC_FREE`.
        knot_type : KnotVectorType, optional
            Interior knot placement. By default, `KnotVectorType.FREE`.
        solver : SolverStrategy, optional
            Linear solver selection. By default, `SolverStrategy.AUTO`.
        max_dense_equations : int, optional
            With `SolverStrategy.AUTO`, smaller systems are solved dense.
            By default, 1024.
        verbose : bool, optional
            Show progress while reading the samples and report the solver used.
            By default, False.

        Returns
        -------
        BSpline
            Spline interpolating the samples.

        Raises
        ------
        ConstructionError
            If the grid is incomplete or a variable has too few distinct abscissae.
        SolveError
            If the control point equations can not be solved.

        Examples
        --------
        >>> table = DataTable()
        >>> for x, y in [(0, 0), (1, 1), (2, 0), (3, 1)]:
        ...     table.addSample(x, y)
        >>> spline = BSpline.fitFromSamples(table)
        >>> round(spline.evaluate([2.]), 10)
        0.0
        """
        if not samples.isGridComplete():
            raise ConstructionError(
                "Cannot create B-spline from irregular (incomplete) grid."
            )
        NPa = samples.getNumVariables()
        n_samples = samples.getNumSamples()
        X = np.empty((n_samples, NPa), dtype="float")
        y = np.empty(n_samples, dtype="float")
        for i, (x, yi) in enumerate(
            tqdm(samples, total=n_samples, desc="Reading samples", disable=not verbose)
        ):
            X[i] = x
            y[i] = yi
        bases = [
            BSplineBasis.fromSamples(X[:, idx], spline_type.degree, knot_type)
            for idx in range(NPa)
        ]
        basis = BSplineTensorBasis(bases)
        A = cls.computeBasisFunctionMatrix(basis, X)
        B = np.hstack((X, y[:, None]))
        C = linear_solvers.solve(
            A, B, strategy=solver, max_dense_equations=max_dense_equations, verbose=verbose
        )
        return cls._from_parts(basis, C[:, NPa:].T, C[:, :NPa].T)

    @staticmethod
    def computeBasisFunctionMatrix(
        basis: BSplineTensorBasis, X: np.ndarray[np.floating]
    ) -> sps.csr_matrix:
        """
        Design matrix of the tensor basis at the points `X`.

        Parameters
        ----------
        basis : BSplineTensorBasis
            Tensor basis.
        X : np.ndarray[np.floating]
            Points of shape (n_points, `NPa`).

        Returns
        -------
        A : sps.csr_matrix
            Matrix of shape (n_points, `basis.numBasisFunctions()`) with at most
            `basis.supportedPrInterval()` nonzeros per row.
        """
        return basis.eval_points(X)

    @staticmethod
    def _computeKnotAverages(basis: BSplineTensorBasis) -> np.ndarray[np.floating]:
        """
        Knot averages of every tensor basis function.

        Row `i` is the Kronecker product of the Greville abscissae of dimension `i`
        with vectors of ones for the other dimensions, matching the tensor ordering.
        """
        grevilles = [b.greville_abscissa() for b in basis.bases]
        knotaverages = np.empty((basis.NPa, basis.numBasisFunctions()), dtype="float")
        for i in range(basis.NPa):
            row = np.ones(1)
            for j, greville in enumerate(grevilles):
                row = np.kron(row, greville if i == j else np.ones(greville.size))
            knotaverages[i] = row
        return knotaverages

    def checkControlPoints(self) -> bool:
        """
        Check the shapes of the coefficients and knot averages against the basis.

        Raises
        ------
        ConstructionError
            If the coefficients are not a single row with one entry per basis function,
            or the knot averages do not have one row per variable and the same number
            of columns as the coefficients.
        """
        n_funcs = self.basis.numBasisFunctions()
        if self.coefficients.shape != (1, n_funcs):
            raise ConstructionError(
                f"Coefficients must have shape (1, {n_funcs}), got {self.coefficients.shape}."
            )
        if self.knotaverages.shape != (self.NPa, self.coefficients.shape[1]):
            raise ConstructionError(
                f"Knot averages must have shape ({self.NPa}, {n_funcs}), "
                f"got {self.knotaverages.shape}."
            )
        return True

    def _checkPoint(self, x: Iterable[float], caller: str) -> np.ndarray[np.floating]:
        x = np.asarray(x, dtype="float").ravel()
        if not self.basis.insideSupport(x):
            raise DomainError(x, f"BSpline.{caller}: Evaluation at point outside domain.")
        return x

    def pointInDomain(self, x: Iterable[float]) -> bool:
        return self.basis.insideSupport(x)

    def evaluate(self, x: Iterable[float]) -> float:
        """
        Evaluate the B-spline at one point.

        Parameters
        ----------
        x : Iterable[float]
            Point with `NPa` coordinates.

        Returns
        -------
        value : float
            `coefficients @ basis values at x`.

        Raises
        ------
        DomainError
            If `x` lies outside the support box of the basis.
        """
        x = self._checkPoint(x, "evaluate")
        return float((self.basis.eval(x) @ self.coefficients.T)[0, 0])

    __call__ = evaluate

    def evaluate_points(self, X: np.ndarray[np.floating]) -> np.ndarray[np.floating]:
        """
        Evaluate the B-spline at many points.

        Parameters
        ----------
        X : np.ndarray[np.floating]
            Points of shape (n_points, `NPa`).

        Returns
        -------
        values : np.ndarray[np.floating]
            Array of size n_points.

        Raises
        ------
        DomainError
            If any point lies outside the support box.
        """
        X = np.asarray(X, dtype="float").reshape((-1, self.NPa))
        for x in X:
            self._checkPoint(x, "evaluate_points")
        return (self.basis.eval_points(X) @ self.coefficients.T).ravel()

    def evalJacobian(self, x: Iterable[float]) -> np.ndarray[np.floating]:
        """
        Jacobian of the B-spline at one point, a (1, `NPa`) matrix.

        Raises
        ------
        DomainError
            If `x` lies outside the support box.
        """
        x = self._checkPoint(x, "evalJacobian")
        Bi = self.basis.evalBasisJacobian(x)
        return np.asarray(Bi.T @ self.coefficients.T).T

    def evalHessian(self, x: Iterable[float]) -> np.ndarray[np.floating]:
        """
        Hessian of the B-spline at one point, a symmetric (`NPa`, `NPa`) matrix.

        Computed as `kron(I, coefficients) @ DB` where `DB` stacks the second
        derivative tensors of the basis (see `BSplineTensorBasis.evalBasisHessian`).

        Raises
        ------
        DomainError
            If `x` lies outside the support box.
        """
        x = self._checkPoint(x, "evalHessian")
        caug = sps.kron(
            sps.identity(self.NPa, format="csr"), sps.csr_matrix(self.coefficients), format="csr"
        )
        DB = self.basis.evalBasisHessian(x)
        return (caug @ DB).toarray()

    def getNumVariables(self) -> int:
        return self.NPa

    def getNumControlPoints(self) -> int:
        return self.coefficients.shape[1]

    def getNumBasisFunctions(self) -> int:
        return self.basis.numBasisFunctions()

    def getCoefficients(self) -> np.ndarray[np.floating]:
        return self.coefficients.copy()

    def getKnotAverages(self) -> np.ndarray[np.floating]:
        return self.knotaverages.copy()

    def getKnotVectors(self) -> list[np.ndarray[np.floating]]:
        return self.basis.getKnots()

    def getBasisDegrees(self) -> np.ndarray[np.integer]:
        return self.basis.getDegrees()

    def getDomainLowerBound(self) -> np.ndarray[np.floating]:
        return self.basis.getLowerBounds()

    def getDomainUpperBound(self) -> np.ndarray[np.floating]:
        return self.basis.getUpperBounds()

    def getControlPoints(self) -> np.ndarray[np.floating]:
        """
        Knot averages stacked over the coefficients, shape (`NPa` + 1, number of basis
        functions).
        """
        return np.vstack((self.knotaverages, self.coefficients))

    def setControlPoints(self, controlPoints: np.ndarray[np.floating]):
        """
        Replace the knot averages and coefficients.

        Parameters
        ----------
        controlPoints : np.ndarray[np.floating]
            Matrix of shape (`NPa` + 1, number of basis functions); the last row holds
            the coefficients.

        Raises
        ------
        ConstructionError
            If the shape does not match; the spline is left unchanged.
        """
        controlPoints = np.asarray(controlPoints, dtype="float")
        expected = (self.NPa + 1, self.basis.numBasisFunctions())
        if controlPoints.shape != expected:
            raise ConstructionError(
                f"Control points must have shape {expected}, got {controlPoints.shape}."
            )
        self.knotaverages = controlPoints[: self.NPa].copy()
        self.coefficients = controlPoints[self.NPa :].copy()
        self.checkControlPoints()

    def _commit(self, basis: BSplineTensorBasis, D: sps.spmatrix):
        # D has shape (new number of functions, old number of functions)
        coefficients = np.asarray(D @ self.coefficients.T).T
        knotaverages = np.asarray(D @ self.knotaverages.T).T
        self._setState(basis, coefficients, knotaverages)

    def insertKnots(self, tau: float, dim: int, multiplicity: int = 1):
        """
        Insert the knot `tau` with `multiplicity` in the knot vector of variable `dim`.

        The represented function is unchanged.

        Raises
        ------
        StructuralError
            If `dim` is invalid, `tau` is outside the support, or the multiplicity of
            `tau` would exceed the degree + 1. The spline is left unchanged.

        Examples
        --------
        >>> spline = BSpline([0., 1.], [[0, 0, 1, 1]], [1])
        >>> spline.insertKnots(0.5, 0)
        >>> spline.getKnotVectors()[0]
        array([0. , 0. , 0.5, 1. , 1. ])
        >>> spline.getCoefficients()
        array([[0. , 0.5, 1. ]])
        """
        basis = self.basis.copy()
        D = basis.insertKnots(tau, dim, multiplicity)
        if D is None:
            raise StructuralError(
                f"BSpline.insertKnots: Cannot insert knot {tau} with multiplicity "
                f"{multiplicity} in dimension {dim}."
            )
        self._commit(basis, D)

    def refineKnotVectors(self, max_interval_fraction: float = DEFAULT_MAX_INTERVAL_FRACTION):
        """
        Bisect every knot interval longer than `max_interval_fraction` of its
        dimension's support, in all dimensions, with one composed transformation.

        Raises
        ------
        StructuralError
            If `max_interval_fraction` is not in `]0, 1]`.
        """
        basis = self.basis.copy()
        D = basis.refineKnots(max_interval_fraction)
        if D is None:
            raise StructuralError("BSpline.refineKnotVectors: Failed to refine knot vectors!")
        self._commit(basis, D)

    refine = refineKnotVectors

    def regularizeKnotVectors(self, lb: Iterable[float], ub: Iterable[float]):
        """
        Make `lb` and `ub` knots of multiplicity degree + 1 in every dimension.

        Raises
        ------
        StructuralError
            If the bounds have the wrong size or lie outside the support.
        """
        basis = self.basis.copy()
        D = basis.regularizeKnots(lb, ub)
        if D is None:
            raise StructuralError("BSpline.regularizeKnotVectors: Failed to regularize knot vectors!")
        self._commit(basis, D)

    def removeUnsupportedBasisFunctions(self, lb: Iterable[float], ub: Iterable[float]):
        """
        Remove the control points whose basis function vanishes on the box `[lb, ub]`.

        Raises
        ------
        StructuralError
            If the reduction is degenerate or would leave no basis function.
        """
        basis = self.basis.copy()
        S = basis.reduceSupport(lb, ub)
        if S is None:
            raise StructuralError(
                "BSpline.removeUnsupportedBasisFunctions: Failed to remove unsupported basis functions!"
            )
        self._commit(basis, S)

    def reduceDomain(
        self,
        lb: Iterable[float],
        ub: Iterable[float],
        regularize: bool = True,
        refine: bool = True,
        max_interval_fraction: float = DEFAULT_MAX_INTERVAL_FRACTION,
    ):
        """
        Restrict the B-spline to the box `[lb, ub]`.

        The box is intersected with the current support. If it is a strict subset, the
        knot vectors are optionally regularized at the new bounds (so the trimmed
        boundaries are knots of multiplicity degree + 1 and the shape is not
        distorted), the unsupported basis functions are removed and the knot vectors
        are optionally refined. The function is unchanged on the retained box.

        Parameters
        ----------
        lb : Iterable[float]
            Lower bound of every variable.
        ub : Iterable[float]
            Upper bound of every variable.
        regularize : bool, optional
            Regularize the knot vectors at the new bounds first. By default, True.
        refine : bool, optional
            Refine the knot vectors afterwards. By default, True.
        max_interval_fraction : float, optional
            Refinement tolerance, see `refineKnotVectors`. By default, 0.25.

        Raises
        ------
        StructuralError
            If the bounds have the wrong size, the box is empty or does not meet the
            support, or any step fails. The spline is then left unchanged.
        """
        lb = np.asarray(lb, dtype="float").ravel()
        ub = np.asarray(ub, dtype="float").ravel()
        if lb.size != self.NPa or ub.size != self.NPa:
            raise StructuralError(
                f"BSpline.reduceDomain: Bounds must have {self.NPa} coordinates."
            )
        sl = self.basis.getLowerBounds()
        su = self.basis.getUpperBounds()
        isStrictSubset = False
        for dim in range(self.NPa):
            if ub[dim] <= lb[dim] or lb[dim] >= su[dim] or ub[dim] <= sl[dim]:
                raise StructuralError(
                    "BSpline.reduceDomain: Cannot reduce B-spline domain to empty set!"
                )
            if su[dim] > ub[dim]:
                isStrictSubset = True
                su[dim] = ub[dim]
            if lb[dim] > sl[dim]:
                isStrictSubset = True
                sl[dim] = lb[dim]
        if not isStrictSubset:
            return

        basis = self.basis.copy()
        D = sps.identity(basis.numBasisFunctions(), format="csr")
        if regularize:
            Dr = basis.regularizeKnots(sl, su)
            if Dr is None:
                raise StructuralError("BSpline.reduceDomain: Failed to regularize knot vectors!")
            D = Dr @ D
        S = basis.reduceSupport(sl, su)
        if S is None:
            raise StructuralError(
                "BSpline.reduceDomain: Failed to remove unsupported basis functions!"
            )
        D = S @ D
        if refine:
            Dn = basis.refineKnots(max_interval_fraction)
            if Dn is None:
                raise StructuralError("BSpline.reduceDomain: Failed to refine knot vectors!")
            D = Dn @ D
        self._commit(basis, D)

    def to_dict(self) -> dict:
        """
        Returns a dictionary representation of the BSpline object.
        """
        return {
            "basis": self.basis.to_dict(),
            "coefficients": self.coefficients.tolist(),
            "knotaverages": self.knotaverages.tolist(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "BSpline":
        """
        Creates a BSpline object from a dictionary representation.
        """
        return cls._from_parts(
            BSplineTensorBasis.from_dict(data["basis"]),
            np.array(data["coefficients"], dtype="float").reshape((1, -1)),
            np.array(data["knotaverages"], dtype="float").reshape(
                (len(data["basis"]["bases"]), -1)
            ),
        )

    def save(self, filepath: str) -> None:
        """
        Save the BSpline object to a file.

        Extensions json and pkl store the dictionary representation; any other
        extension uses the line oriented text format of `multispline.save_utils`.
        """
        ext = filepath.split(".")[-1]
        if ext == "json":
            with open(filepath, "w") as f:
                json.dump(self.to_dict(), f, indent=2)
        elif ext == "pkl":
            with open(filepath, "wb") as f:
                pickle.dump(self.to_dict(), f)
        else:
            save_text(filepath, self.getBasisDegrees(), self.getKnotVectors(), self.coefficients)

    @classmethod
    def load(cls, filepath: str) -> "BSpline":
        """
        Load a BSpline object from a file written by `save`.

        Raises
        ------
        FormatError
            If a text file is malformed or describes an invalid B-spline.
        """
        ext = filepath.split(".")[-1]
        if ext == "json":
            with open(filepath, "r") as f:
                return cls.from_dict(json.load(f))
        if ext == "pkl":
            with open(filepath, "rb") as f:
                return cls.from_dict(pickle.load(f))
        degrees, knots, coefficients = load_text(filepath)
        try:
            return cls(coefficients, knots, degrees)
        except ConstructionError as e:
            raise FormatError(f"Invalid B-spline in {filepath}: {e}") from e
