import numpy as np
import pytest
import matplotlib.pyplot as plt

from multispline import BSplineBasis, KnotVectorType, ConstructionError


def quadratic_basis():
    return BSplineBasis(2, np.array([0, 0, 0, 0.5, 1, 1, 1], dtype='float'))

def test___init__():
    p = 2
    knot = np.array([0, 0, 0, 0.5, 1, 1, 1], dtype='float')
    basis = BSplineBasis(p, knot)
    assert (basis.p==p
            and np.all(basis.knot==knot)
            and basis.count()==knot.size - p - 1
            and basis.lowerBound()==0
            and basis.upperBound()==1
            and basis.isRegular())

@pytest.mark.parametrize("p, knot", [
    (-1, [0, 1]),                      # negative degree
    (2, [0, 0, 0, 1, 1]),              # too short
    (1, [0, 0, 1, 0.5, 1, 1]),         # decreasing
    (1, [0, 0, 0.5, 0.5, 0.5, 1, 1]),  # multiplicity above p + 1
    (1, [0, 0, np.nan, 1, 1]),         # non finite
])
def test___init___rejects_malformed_knots(p, knot):
    with pytest.raises(ConstructionError):
        BSplineBasis(p, knot)

def test_multiplicity():
    basis = quadratic_basis()
    assert (basis.multiplicity(0)==3
            and basis.multiplicity(0.5)==1
            and basis.multiplicity(0.7)==0)

def test_isRegular():
    assert not BSplineBasis(1, [0, 0.2, 0.8, 1]).isRegular()

def test_N():
    basis = quadratic_basis()
    XI = np.linspace(0, 1, 11)
    N = np.array([(XI<=0.5)*( 4*XI**2 - 4*XI + 1)                                 ,
                  (XI<=0.5)*(-6*XI**2 + 4*XI + 0) + (XI>0.5)*( 2*XI**2 - 4*XI + 2),
                  (XI<=0.5)*( 2*XI**2 + 0*XI + 0) + (XI>0.5)*(-6*XI**2 + 8*XI - 2),
                                                    (XI>0.5)*( 4*XI**2 - 4*XI + 1)], dtype='float')
    DN = np.array([(XI<=0.5)*(  8*XI - 4)                        ,
                   (XI<=0.5)*(-12*XI + 4) + (XI>0.5)*(  4*XI - 4),
                   (XI<=0.5)*(  4*XI + 0) + (XI>0.5)*(-12*XI + 8),
                                            (XI>0.5)*(  8*XI - 4)], dtype='float')
    assert np.allclose(N.T, basis.N(XI).toarray()) and np.allclose(DN.T, basis.N(XI, 1).toarray())

def test_N_second_derivative():
    basis = quadratic_basis()
    XI = np.array([0.1, 0.3, 0.7, 0.9])
    left = np.array([8, -12, 4, 0], dtype='float')
    right = np.array([0, 4, -12, 8], dtype='float')
    expected = np.array([left, left, right, right])
    assert np.allclose(basis.N(XI, 2).toarray(), expected)

def test_N_derivative_above_degree():
    basis = quadratic_basis()
    assert basis.N(np.linspace(0, 1, 5), 3).nnz==0

def test_N_partition_of_unity():
    basis = BSplineBasis(3, [0, 0, 0, 0, 0.2, 0.2, 0.5, 0.9, 1, 1, 1, 1])
    XI = np.linspace(0, 1, 101)
    N = basis.N(XI)
    assert np.allclose(N.sum(axis=1), 1) and np.all(N.getnnz(axis=1)<=basis.supportedPrInterval())

def test_N_closed_last_interval():
    basis = quadratic_basis()
    assert np.allclose(basis.N(1.).toarray(), [[0, 0, 0, 1]])

def test_N_outside_support():
    basis = quadratic_basis()
    N = basis.N([-0.1, 1.1])
    assert N.shape==(2, 4) and N.nnz==0

def test_N_degree_zero():
    basis = BSplineBasis(0, [0, 0.5, 1])
    assert np.allclose(basis.N([0.2, 0.5, 1.]).toarray(), [[1, 0], [0, 1], [0, 1]])

def test_greville_abscissa():
    assert np.allclose(quadratic_basis().greville_abscissa(), [0, 0.25, 0.75, 1])

def test_fromSamples():
    cubic = BSplineBasis.fromSamples([3., 0., 1., 2., 2.], 3)
    quadratic = BSplineBasis.fromSamples(np.arange(5), 2)
    linear = BSplineBasis.fromSamples(np.arange(4), 1)
    equidistant = BSplineBasis.fromSamples([0, 1, 3, 4, 4.5], 2, KnotVectorType.EQUIDISTANT)
    assert (np.allclose(cubic.knot, [0, 0, 0, 0, 3, 3, 3, 3])
            and np.allclose(quadratic.knot, [0, 0, 0, 1.5, 2.5, 4, 4, 4])
            and np.allclose(linear.knot, [0, 0, 1, 2, 3, 3])
            and np.allclose(equidistant.knot, [0, 0, 0, 1.5, 3, 4.5, 4.5, 4.5])
            and equidistant.count()==5)

def test_fromSamples_too_few_abscissae():
    with pytest.raises(ConstructionError):
        BSplineBasis.fromSamples([0., 1., 1., 2.], 3)

def test_knotInsertion():
    basis = quadratic_basis()
    ctrlPts = np.array([[0, 1, 1, 0], [0, 1, 2, 3]], dtype='float')
    XI = np.linspace(0, 1, 11)
    pts_before = (basis.N(XI) @ ctrlPts.T).T
    knots_to_add = np.array([0.5, 0.75], dtype='float')
    D = basis.knotInsertion(knots_to_add)
    ctrlPts = (D@ctrlPts.T).T
    pts_after = (basis.N(XI) @ ctrlPts.T).T
    assert (np.allclose(pts_before, pts_after)
            and np.allclose(basis.knot, [0, 0, 0, 0.5, 0.5, 0.75, 1, 1, 1])
            and D.shape==(6, 4))

def test_knotInsertion_full_multiplicity():
    basis = BSplineBasis(3, [0, 0, 0, 0, 1, 2, 2, 2, 2])
    ctrlPts = np.array([[1, -2, 0.5, 3, 1]], dtype='float')
    XI = np.linspace(0, 2, 21)
    pts_before = basis.N(XI) @ ctrlPts.T
    D = basis.knotInsertion([1, 1, 1])
    pts_after = basis.N(XI) @ (D @ ctrlPts.T)
    assert basis.multiplicity(1)==4 and np.allclose(pts_before, pts_after)

def test_knotInsertion_rejected():
    basis = quadratic_basis()
    knot = basis.knot.copy()
    assert (basis.knotInsertion([0.5, 0.5, 0.5]) is None
            and basis.knotInsertion(1.5) is None
            and np.all(basis.knot==knot))

def test_knotInsertion_nothing():
    basis = quadratic_basis()
    D = basis.knotInsertion([])
    assert np.allclose(D.toarray(), np.eye(4))

def test_knotRefinement():
    basis = BSplineBasis(1, [0, 0, 1, 1])
    ctrlPts = np.array([[2, 5]], dtype='float')
    D = basis.knotRefinement(0.25)
    assert (np.allclose(basis.knot, [0, 0, 0.25, 0.5, 0.75, 1, 1])
            and np.allclose((D @ ctrlPts.T).T, [[2, 2.75, 3.5, 4.25, 5]]))

def test_knotRefinement_idempotent():
    basis = BSplineBasis(2, [0, 0, 0, 0.1, 1, 1, 1])
    basis.knotRefinement()
    knot = basis.knot.copy()
    D = basis.knotRefinement()
    assert (np.all(np.diff(np.unique(knot))<=0.25)
            and np.all(basis.knot==knot)
            and np.allclose(D.toarray(), np.eye(basis.count())))

def test_knotRefinement_invalid_fraction():
    basis = quadratic_basis()
    assert basis.knotRefinement(0) is None and basis.knotRefinement(1.5) is None

def test_regularizationKnots():
    basis = quadratic_basis()
    assert (np.allclose(basis.regularizationKnots(0.25, 0.5), [0.25, 0.25, 0.25, 0.5, 0.5])
            and basis.regularizationKnots(0, 1).size==0
            and basis.regularizationKnots(-1, 0.5) is None)

def test_reduceSupport():
    basis = BSplineBasis(1, [0, 0, 1, 2, 3, 3])
    ctrlPts = np.array([[4, 1, 7, 2]], dtype='float')
    XI = np.linspace(1, 2, 11)
    pts_before = basis.N(XI) @ ctrlPts.T
    S = basis.reduceSupport(1, 2)
    pts_after = basis.N(XI) @ (S @ ctrlPts.T)
    assert (np.allclose(S.toarray(), [[0, 1, 0, 0], [0, 0, 1, 0]])
            and np.allclose(basis.knot, [0, 1, 2, 3])
            and np.allclose(pts_before, pts_after))

def test_reduceSupport_full_support():
    basis = quadratic_basis()
    knot = basis.knot.copy()
    S = basis.reduceSupport(0, 1)
    assert np.allclose(S.toarray(), np.eye(4)) and np.all(basis.knot==knot)

@pytest.mark.parametrize("lb, ub", [(0.5, 0.5), (0.7, 0.2), (-1, 0.5), (0.5, 2)])
def test_reduceSupport_rejected(lb, ub):
    basis = quadratic_basis()
    knot = basis.knot.copy()
    assert basis.reduceSupport(lb, ub) is None and np.all(basis.knot==knot)

def test_transformationMatrix_is_pure():
    basis = quadratic_basis()
    knot = basis.knot.copy()
    D = basis.transformationMatrix(np.array([0, 0, 0, 0.25, 0.5, 1, 1, 1], dtype='float'))
    assert D.shape==(5, 4) and np.all(basis.knot==knot) and np.allclose(D.sum(axis=1), 1)

def test_to_dict_from_dict():
    basis = quadratic_basis()
    other = BSplineBasis.from_dict(basis.to_dict())
    assert other.p==basis.p and np.all(other.knot==basis.knot)

def test_plotN():
    basis = quadratic_basis()
    basis.plotN(k=1, show=False)
    n_lines = len(plt.gca().get_lines())
    plt.close("all")
    assert n_lines>=basis.count()

def test_N_nan():
    basis = quadratic_basis()
    N = basis.N([np.nan, 0.5])
    assert N.shape==(2, 4) and N.getnnz(axis=1)[0]==0 and np.all(np.isfinite(N.data))
