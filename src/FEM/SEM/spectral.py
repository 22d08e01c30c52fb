"""Spectral building blocks for SEM: LGL nodes, Lagrange bases and the reference quad."""

from __future__ import annotations
from dataclasses import dataclass, field
import numpy as np
from numpy.polynomial.legendre import Legendre, leggauss


def jacobi_poly(xs: np.ndarray, alpha: float, beta: float, N: int) -> np.ndarray:
    """Jacobi polynomial P_N^{(alpha,beta)}(x) by the three-term recurrence."""
    xs = np.asarray(xs, dtype=np.float64)
    prev = np.ones_like(xs)
    if N == 0:
        return prev
    curr = 0.5 * (alpha - beta + (alpha + beta + 2) * xs)
    ab = alpha + beta
    for m in range(1, N):
        s = 2 * m + ab
        a_prev = 2 * (m + alpha) * (m + beta) / ((s + 1) * s)
        a_mid = (alpha**2 - beta**2) / ((s + 2) * s)
        a_next = 2 * (m + 1) * (m + ab + 1) / ((s + 2) * (s + 1))
        prev, curr = curr, ((a_mid + xs) * curr - a_prev * prev) / a_next
    return curr


def legendre_gauss_lobatto_nodes(num_nodes: int) -> np.ndarray:
    """Compute LGL nodes on [-1, 1]."""
    degree = num_nodes - 1
    if degree == 1:
        return np.array([-1.0, 1.0])
    roots = Legendre.basis(degree).deriv().roots()
    return np.sort(np.concatenate(([-1.0], np.real(roots), [1.0])))


def legendre_gauss_lobatto_weights(num_nodes: int) -> np.ndarray:
    """Compute LGL quadrature weights (sum to 2)."""
    N = num_nodes - 1
    if N == 0:
        return np.array([2.0])
    nodes = legendre_gauss_lobatto_nodes(num_nodes)
    P_N = jacobi_poly(nodes, 0.0, 0.0, N)
    return 2.0 / (N * (N + 1) * P_N**2)


def gauss_legendre(num_points: int) -> tuple[np.ndarray, np.ndarray]:
    """Gauss-Legendre points and weights on [-1, 1], exact to degree 2n-1."""
    points, weights = leggauss(num_points)
    return points, weights


def legendre_vandermonde(x: np.ndarray, degree: int) -> np.ndarray:
    """Vandermonde matrix V[q, n] = P_n(x_q) for n = 0..degree."""
    x = np.asarray(x, dtype=np.float64)
    V = np.zeros((len(x), degree + 1))
    for n in range(degree + 1):
        V[:, n] = jacobi_poly(x, 0.0, 0.0, n)
    return V


def legendre_vandermonde_x(x: np.ndarray, degree: int) -> np.ndarray:
    """Derivative Vandermonde matrix Vx[q, n] = P_n'(x_q)."""
    x = np.asarray(x, dtype=np.float64)
    Vx = np.zeros((len(x), degree + 1))
    for n in range(1, degree + 1):  # n=0 derivative is 0
        Vx[:, n] = 0.5 * (n + 1) * jacobi_poly(x, 1.0, 1.0, n - 1)
    return Vx


def lagrange_basis(nodes: np.ndarray, x: np.ndarray) -> np.ndarray:
    """Evaluate the Lagrange basis on ``nodes`` at points ``x``.

    Returns
    -------
    np.ndarray
        Matrix L of shape (len(x), len(nodes)) with L[q, i] = l_i(x_q).
    """
    degree = len(nodes) - 1
    V = legendre_vandermonde(nodes, degree)
    return np.linalg.solve(V.T, legendre_vandermonde(x, degree).T).T


def lagrange_basis_derivative(nodes: np.ndarray, x: np.ndarray) -> np.ndarray:
    """Derivatives L'[q, i] = l_i'(x_q) of the Lagrange basis on ``nodes``."""
    degree = len(nodes) - 1
    V = legendre_vandermonde(nodes, degree)
    return np.linalg.solve(V.T, legendre_vandermonde_x(x, degree).T).T


def differentiation_matrix(nodes: np.ndarray) -> np.ndarray:
    """Differentiation matrix D such that D @ u ≈ du/dx at the nodes."""
    return lagrange_basis_derivative(nodes, nodes)


@dataclass
class ReferenceQuad:
    """Tensor-product reference element [-1, 1]^2 of order p.

    Nodes are the p+1 Gauss-Lobatto-Legendre points per direction and the
    quadrature uses p+2 Gauss-Legendre points per direction. Local node
    (i, j) sits at (xi_i, eta_j) and has local index i * (p+1) + j.
    """
    order: int
    num_quadrature: int | None = None

    nodes: np.ndarray = field(init=False, repr=False)
    qpoints: np.ndarray = field(init=False, repr=False)
    qweights: np.ndarray = field(init=False, repr=False)
    B: np.ndarray = field(init=False, repr=False)
    G: np.ndarray = field(init=False, repr=False)

    def __post_init__(self):
        if self.order < 1:
            raise ValueError(f"Polynomial order must be >= 1, got {self.order}")
        if self.num_quadrature is None:
            self.num_quadrature = self.order + 2

        self.nodes = legendre_gauss_lobatto_nodes(self.order + 1)
        self.qpoints, self.qweights = gauss_legendre(self.num_quadrature)

        # 1D basis values and derivatives at the quadrature points
        self.B = lagrange_basis(self.nodes, self.qpoints)
        self.G = lagrange_basis_derivative(self.nodes, self.qpoints)

    @property
    def num_nodes(self) -> int:
        return (self.order + 1) ** 2

    @property
    def shape(self) -> tuple[int, int]:
        return (self.order + 1, self.order + 1)

    def tensor_nodes(self) -> tuple[np.ndarray, np.ndarray]:
        """Reference coordinates of the local nodes, flattened in local order."""
        Xi, Eta = np.meshgrid(self.nodes, self.nodes, indexing="ij")
        return Xi.ravel(), Eta.ravel()

    def tensor_quadrature(self) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Reference quadrature points and weights, flattened with xi-index first."""
        Xi, Eta = np.meshgrid(self.qpoints, self.qpoints, indexing="ij")
        W = np.outer(self.qweights, self.qweights)
        return Xi.ravel(), Eta.ravel(), W.ravel()
