from typing import Iterable

import numpy as np
import numba as nb
import scipy.sparse as sps


@nb.njit(cache=True)
def _row_wise_kron_indptr(a_indptr, b_indptr):
    """
    Row pointer of the row-wise Kronecker product, i.e. the exact number of
    nonzeros of every output row, so the output can be allocated once.
    """
    height = a_indptr.size - 1
    out_indptr = np.empty(height + 1, dtype=np.int64)
    out_indptr[0] = 0
    for i in range(height):
        nnz_a = a_indptr[i + 1] - a_indptr[i]
        nnz_b = b_indptr[i + 1] - b_indptr[i]
        out_indptr[i + 1] = out_indptr[i] + nnz_a * nnz_b
    return out_indptr


@nb.njit(cache=True)
def _row_wise_kron(a_data, a_indices, a_indptr, b_data, b_indices, b_indptr, b_width):
    """
    Compute the CSR arrays of C such that C[i, :] = kron(A[i, :], B[i, :]).

    For each nonzero `a` of a row of A and each nonzero `b` of the same row of B:
        out_index = a_index * b_width + b_index
        out_value = a_value * b_value
    """
    out_indptr = _row_wise_kron_indptr(a_indptr, b_indptr)
    total = out_indptr[-1]
    out_data = np.empty(total, dtype=np.float64)
    out_indices = np.empty(total, dtype=np.int64)
    for i in range(a_indptr.size - 1):
        off = out_indptr[i]
        for ia in range(a_indptr[i], a_indptr[i + 1]):
            offset_a = a_indices[ia] * b_width
            for ib in range(b_indptr[i], b_indptr[i + 1]):
                out_indices[off] = offset_a + b_indices[ib]
                out_data[off] = a_data[ia] * b_data[ib]
                off += 1
    return out_data, out_indices, out_indptr


def row_wise_kron(A: sps.spmatrix, B: sps.spmatrix) -> sps.csr_matrix:
    """
    Compute a "1D" Kronecker product row by row (Khatri-Rao product).

    For each row i, the result C[i, :] = kron(A[i, :], B[i, :]).
    Applied to per-dimension basis evaluations at the same points, it gives the
    tensor-product basis evaluation at those points with the first dimension
    varying slowest, like `scipy.sparse.kron`.

    Parameters
    ----------
    A : scipy.sparse.spmatrix
        Input sparse matrix A.
    B : scipy.sparse.spmatrix
        Input sparse matrix B with the same number of rows as A.

    Returns
    -------
    C : scipy.sparse.csr_matrix
        Resulting sparse matrix with shape (A.shape[0], A.shape[1]*B.shape[1]).

    Examples
    --------
    >>> A = sps.csr_matrix([[1., 2.], [0., 3.]])
    >>> B = sps.csr_matrix([[1., 0., 1.], [2., 0., 0.]])
    >>> row_wise_kron(A, B).toarray()
    array([[1., 0., 1., 2., 0., 2.],
           [0., 0., 0., 6., 0., 0.]])
    """
    if A.shape[0] != B.shape[0]:
        raise ValueError("A and B must have the same number of rows")
    A = sps.csr_matrix(A)
    B = sps.csr_matrix(B)
    A.sort_indices()
    B.sort_indices()
    out_data, out_indices, out_indptr = _row_wise_kron(
        A.data.astype(np.float64),
        A.indices.astype(np.int64),
        A.indptr.astype(np.int64),
        B.data.astype(np.float64),
        B.indices.astype(np.int64),
        B.indptr.astype(np.int64),
        B.shape[1],
    )
    return sps.csr_matrix(
        (out_data, out_indices, out_indptr), shape=(A.shape[0], A.shape[1] * B.shape[1])
    )


def row_wise_kron_chain(mats: Iterable[sps.spmatrix]) -> sps.csr_matrix:
    """
    Fold `row_wise_kron` over a sequence of matrices, first one varying slowest.
    """
    result = None
    for mat in mats:
        result = sps.csr_matrix(mat) if result is None else row_wise_kron(result, mat)
    return result


def kron_chain(mats: Iterable[sps.spmatrix]) -> sps.csr_matrix:
    """
    Sparse Kronecker product of a sequence of matrices, first one varying slowest.

    `scipy.sparse.kron` only allocates the nonzeros of the result, so a chain of
    per-dimension transformations stays cheap in high dimension.
    """
    result = None
    for mat in mats:
        result = sps.csr_matrix(mat) if result is None else sps.kron(result, mat, format="csr")
    return result


def kron_expand(D: sps.spmatrix, dim: int, counts: Iterable[int]) -> sps.csr_matrix:
    """
    Extend a transformation of dimension `dim` to the full tensor space.

    Parameters
    ----------
    D : scipy.sparse.spmatrix
        Transformation matrix acting on the basis functions of dimension `dim`.
    dim : int
        Index of the transformed dimension.
    counts : Iterable[int]
        Number of basis functions of every dimension (the entry of `dim` is ignored).

    Returns
    -------
    D_full : scipy.sparse.csr_matrix
        `kron(I_before, D, I_after)` where the identities cover the dimensions before
        and after `dim`.

    Examples
    --------
    >>> D = sps.csr_matrix([[1.], [1.]])
    >>> kron_expand(D, 1, [2, 1]).toarray()
    array([[1., 0.],
           [1., 0.],
           [0., 1.],
           [0., 1.]])
    """
    counts = list(counts)
    before = int(np.prod(counts[:dim], dtype=int))
    after = int(np.prod(counts[dim + 1 :], dtype=int))
    return kron_chain(
        [
            sps.identity(before, format="csr"),
            D,
            sps.identity(after, format="csr"),
        ]
    )
