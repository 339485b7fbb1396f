from typing import Iterable, Iterator

import numpy as np

from multispline.errors import ConstructionError


class DataTable:
    """
    Table of samples `(x, y)` with `x` a point of `NPa` coordinates and `y` a scalar.

    Samples are iterated in lexicographic order of `x`, first variable varying
    slowest, which is the ordering of the tensor-product basis functions. The order
    is stable, so the design matrix and the right-hand sides built from two
    iterations line up.

    Examples
    --------
    >>> table = DataTable()
    >>> for x in [0., 1., 2., 3.]:
    ...     table.addSample(x, x % 2)
    >>> table.getNumSamples(), table.isGridComplete()
    (4, True)
    """

    def __init__(self, allow_duplicates: bool = False):
        """
        Parameters
        ----------
        allow_duplicates : bool, optional
            Keep several samples at the same point. Otherwise a sample at an already
            sampled point is ignored. A table with duplicated points is never grid
            complete. By default, False.
        """
        self.allow_duplicates = allow_duplicates
        self.numDuplicates = 0
        self._samples: list[tuple[tuple[float, ...], float]] = []
        self._points: set[tuple[float, ...]] = set()
        self._sorted = True
        self._NPa = None

    def addSample(self, x: Iterable[float], y: float):
        """
        Add the sample `(x, y)`.

        Raises
        ------
        ConstructionError
            If `x` does not have the same number of coordinates as the previous samples.
        """
        x = tuple(float(xi) for xi in np.atleast_1d(np.asarray(x, dtype="float")).ravel())
        if self._NPa is None:
            if len(x) == 0:
                raise ConstructionError("A sample needs at least one coordinate.")
            self._NPa = len(x)
        elif len(x) != self._NPa:
            raise ConstructionError(
                f"Sample has {len(x)} coordinates, the table has {self._NPa} variables."
            )
        if x in self._points:
            self.numDuplicates += 1
            if not self.allow_duplicates:
                return
        self._points.add(x)
        self._samples.append((x, float(y)))
        self._sorted = False

    def _sort(self):
        if not self._sorted:
            self._samples.sort(key=lambda sample: sample[0])
            self._sorted = True

    def __iter__(self) -> Iterator[tuple[tuple[float, ...], float]]:
        self._sort()
        return iter(list(self._samples))

    def __len__(self) -> int:
        return len(self._samples)

    def getNumVariables(self) -> int:
        return 0 if self._NPa is None else self._NPa

    def getNumSamples(self) -> int:
        return len(self._samples)

    def isGridComplete(self) -> bool:
        """
        Whether every combination of the distinct abscissae of each variable is sampled
        exactly once.
        """
        if self._NPa is None or len(self._samples) != len(self._points):
            return False
        grid_size = 1
        for x_values in self.getTableX():
            grid_size *= np.unique(x_values).size
        return grid_size == len(self._samples)

    def getTableX(self) -> list[np.ndarray[np.floating]]:
        """
        Abscissae of every sample, one array per variable, in iteration order.
        """
        if self._NPa is None:
            return []
        self._sort()
        X = np.array([x for x, _ in self._samples], dtype="float").reshape((-1, self._NPa))
        return [X[:, idx] for idx in range(self._NPa)]

    def getTableY(self) -> np.ndarray[np.floating]:
        self._sort()
        return np.array([y for _, y in self._samples], dtype="float")
