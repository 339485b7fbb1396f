from enum import Enum
from typing import Union

import numpy as np
import scipy.linalg
import scipy.sparse as sps
import scipy.sparse.linalg as spla

from multispline.errors import SolveError

MAX_DENSE_EQUATIONS = 2**10
RESIDUAL_TOLERANCE = 1e-8


class SolverStrategy(Enum):
    """
    How the control point equations are solved.

    `AUTO` solves small systems (fewer than `MAX_DENSE_EQUATIONS` equations) with the
    dense QR solver; larger ones are tried with the sparse LU solver first and fall
    back to the dense solver if the sparse solve fails. `SPARSE` and `DENSE` force a
    single solver.
    """

    AUTO = "auto"
    SPARSE = "sparse"
    DENSE = "dense"


def _residual_ok(A, X, B) -> bool:
    if not np.all(np.isfinite(X)):
        return False
    residual = np.linalg.norm(A @ X - B)
    scale = max(np.linalg.norm(B), 1.0)
    return residual <= RESIDUAL_TOLERANCE * scale


class SparseLU:
    """
    Sparse LU factorization (`scipy.sparse.linalg.splu`) of a square system.
    """

    def solve(
        self, A: sps.spmatrix, B: np.ndarray[np.floating]
    ) -> tuple[bool, Union[np.ndarray[np.floating], None]]:
        """
        Solve `A @ X = B` for every column of `B` with a single factorization.

        Returns
        -------
        success : bool
            False if the system is not square, the factorization fails or the
            residual is too large.
        X : Union[np.ndarray[np.floating], None]
            Solution of shape (`A.shape[1]`, `B.shape[1]`), `None` on failure.
        """
        A = sps.csc_matrix(A, dtype="float")
        B = np.asarray(B, dtype="float")
        if A.shape[0] != A.shape[1] or A.shape[0] != B.shape[0]:
            return False, None
        try:
            lu = spla.splu(A)
        except RuntimeError:
            return False, None
        X = lu.solve(B)
        if not _residual_ok(A, X, B):
            return False, None
        return True, X


class DenseQR:
    """
    Column pivoted QR factorization (`scipy.linalg.qr`) of a dense system.
    """

    def solve(
        self, A: np.ndarray[np.floating], B: np.ndarray[np.floating]
    ) -> tuple[bool, Union[np.ndarray[np.floating], None]]:
        """
        Solve `A @ X = B` for every column of `B` with a single factorization.

        Returns
        -------
        success : bool
            False if `A` is rank deficient, has fewer rows than columns, or the
            residual is too large.
        X : Union[np.ndarray[np.floating], None]
            Solution of shape (`A.shape[1]`, `B.shape[1]`), `None` on failure.
        """
        A = np.asarray(A, dtype="float")
        B = np.asarray(B, dtype="float")
        m, n = A.shape
        if m < n or n == 0 or m != B.shape[0]:
            return False, None
        Q, R, P = scipy.linalg.qr(A, mode="economic", pivoting=True)
        diag = np.abs(np.diag(R))
        if diag[0] == 0 or diag[-1] <= max(m, n) * np.finfo("float").eps * diag[0]:
            return False, None
        Z = scipy.linalg.solve_triangular(R, Q.T @ B)
        X = np.empty_like(Z)
        X[P] = Z
        if not _residual_ok(A, X, B):
            return False, None
        return True, X


def solve(
    A: sps.spmatrix,
    B: np.ndarray[np.floating],
    strategy: SolverStrategy = SolverStrategy.AUTO,
    max_dense_equations: int = MAX_DENSE_EQUATIONS,
    verbose: bool = False,
) -> np.ndarray[np.floating]:
    """
    Solve the control point equations `A @ X = B` following `strategy`.

    Parameters
    ----------
    A : sps.spmatrix
        Sparse system matrix.
    B : np.ndarray[np.floating]
        Right-hand sides, one per column.
    strategy : SolverStrategy, optional
        Solver selection. By default, `SolverStrategy.AUTO`.
    max_dense_equations : int, optional
        With `SolverStrategy.AUTO`, systems with fewer equations are solved dense.
        By default, 1024.
    verbose : bool, optional
        Print which solver is used. By default, False.

    Returns
    -------
    X : np.ndarray[np.floating]
        Solution of shape (`A.shape[1]`, `B.shape[1]`).

    Raises
    ------
    SolveError
        If the selected solver(s) fail.
    """
    B = np.asarray(B, dtype="float").reshape((A.shape[0], -1))
    if strategy is SolverStrategy.AUTO:
        use_sparse = A.shape[0] >= max_dense_equations
    else:
        use_sparse = strategy is SolverStrategy.SPARSE
    if use_sparse:
        if verbose:
            print("Computing B-spline control points using sparse solver.")
        success, X = SparseLU().solve(A, B)
        if success:
            return X
        if strategy is SolverStrategy.SPARSE:
            raise SolveError("Sparse solver failed to solve for B-spline coefficients.")
        if verbose:
            print("Sparse solve failed, falling back to dense solver.")
    if verbose:
        print("Computing B-spline control points using dense solver.")
    success, X = DenseQR().solve(sps.csr_matrix(A).toarray(), B)
    if not success:
        raise SolveError("Failed to solve for B-spline coefficients.")
    return X
