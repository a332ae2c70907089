"""
===============================================================================
EPHEMVIZ - Rotation Quaternions
===============================================================================

Unit quaternions used for the shell alignment rotation and for interpolating
orientation-valued sample series.

Convention
----------
Scalar-first:

    q = [q_w, q_x, q_y, q_z] = q_w + q_x*i + q_y*j + q_z*k

A quaternion rotates a vector actively:

    v' = q * v * q_conjugate

and the product ``a * b`` applies ``b`` first, then ``a``. The shell solver
relies on this ordering when composing the longitude alignment with the
latitude alignment.

References
----------
    [1] Markley & Crassidis, "Fundamentals of Spacecraft Attitude
        Determination and Control", Springer, 2014.
    [2] Shoemake, "Animating Rotation with Quaternion Curves", SIGGRAPH 1985.

===============================================================================
"""

import numpy as np


class Quaternion:
    """
    Unit quaternion for 3D rotations.

    For a rotation by angle theta about unit axis n:

        q = [cos(theta/2), sin(theta/2) * n]

    Attributes
    ----------
    w, x, y, z : float
        Scalar part followed by the vector part.

    Examples
    --------
    >>> q = Quaternion.from_axis_angle(np.array([0.0, 0.0, 1.0]), np.pi / 2)
    >>> q.rotate_vector(np.array([1.0, 0.0, 0.0]))   # -> [0, 1, 0]
    """

    _NORM_TOLERANCE = 1e-10
    _COMPARISON_TOLERANCE = 1e-9

    def __init__(self, w: float, x: float, y: float, z: float,
                 normalize: bool = True) -> None:
        """
        Parameters
        ----------
        w, x, y, z : float
            Components in scalar-first order.
        normalize : bool, optional
            Normalize to unit length (default). Internal factories that
            already produce unit quaternions pass False.

        Notes
        -----
        q and -q encode the same rotation; normalization picks the one with
        w >= 0 so interpolated series do not flip sign between samples.
        """
        self._q = np.array([w, x, y, z], dtype=np.float64)

        if normalize:
            self._normalize_in_place()

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def w(self) -> float:
        return float(self._q[0])

    @property
    def x(self) -> float:
        return float(self._q[1])

    @property
    def y(self) -> float:
        return float(self._q[2])

    @property
    def z(self) -> float:
        return float(self._q[3])

    @property
    def vector(self) -> np.ndarray:
        """Vector part [x, y, z] as a new array."""
        return self._q[1:4].copy()

    @property
    def components(self) -> np.ndarray:
        """All four components [w, x, y, z] as a new array."""
        return self._q.copy()

    @property
    def norm(self) -> float:
        return float(np.linalg.norm(self._q))

    def _normalize_in_place(self) -> None:
        """
        Scale to unit norm and enforce w >= 0.

        Raises
        ------
        ValueError
            If the quaternion has near-zero norm.
        """
        n = np.linalg.norm(self._q)

        if n < self._NORM_TOLERANCE:
            raise ValueError(
                f"Cannot normalize near-zero quaternion (norm = {n:.2e})."
            )

        self._q /= n

        if self._q[0] < 0.0:
            self._q = -self._q

    # =========================================================================
    # FACTORIES
    # =========================================================================

    @staticmethod
    def identity() -> 'Quaternion':
        """The zero rotation [1, 0, 0, 0]."""
        return Quaternion(1.0, 0.0, 0.0, 0.0, normalize=False)

    @staticmethod
    def from_axis_angle(axis: np.ndarray, angle: float) -> 'Quaternion':
        """
        Create a quaternion rotating by ``angle`` radians about ``axis``.

        Parameters
        ----------
        axis : np.ndarray
            3-element rotation axis. Normalized internally.
        angle : float
            Rotation angle in radians (right-hand rule).

        Returns
        -------
        Quaternion

        Raises
        ------
        ValueError
            If ``axis`` has near-zero magnitude.
        """
        axis = np.asarray(axis, dtype=np.float64)
        axis_norm = np.linalg.norm(axis)

        if axis_norm < 1e-12:
            raise ValueError(
                "Rotation axis has near-zero magnitude; "
                "a rotation about a zero vector is undefined."
            )

        n = axis / axis_norm
        half_angle = angle / 2.0
        sin_half = np.sin(half_angle)

        return Quaternion(np.cos(half_angle),
                          sin_half * n[0], sin_half * n[1], sin_half * n[2])

    # =========================================================================
    # ALGEBRA
    # =========================================================================

    def conjugate(self) -> 'Quaternion':
        """[w, -x, -y, -z]; the inverse rotation for a unit quaternion."""
        return Quaternion(self.w, -self.x, -self.y, -self.z, normalize=False)

    def multiply(self, other: 'Quaternion') -> 'Quaternion':
        """
        Hamilton product ``self * other``.

        The result rotates a vector by ``other`` first and by ``self``
        second.

        Parameters
        ----------
        other : Quaternion
            Right-hand operand.

        Returns
        -------
        Quaternion
        """
        a1, b1, c1, d1 = self._q
        a2, b2, c2, d2 = other._q

        w = a1 * a2 - b1 * b2 - c1 * c2 - d1 * d2
        x = a1 * b2 + b1 * a2 + c1 * d2 - d1 * c2
        y = a1 * c2 - b1 * d2 + c1 * a2 + d1 * b2
        z = a1 * d2 + b1 * c2 - c1 * b2 + d1 * a2

        return Quaternion(w, x, y, z)

    # =========================================================================
    # ROTATION
    # =========================================================================

    def rotate_vector(self, v: np.ndarray) -> np.ndarray:
        """
        Rotate a 3-vector, equivalent to ``self.to_dcm() @ v``.

        Uses the Rodrigues form v' = v + w*t + u x t with t = 2 (u x v),
        where u is the vector part (Markley & Crassidis, Eq. 2.89).
        """
        v = np.asarray(v, dtype=np.float64)
        u = self._q[1:4]
        t = 2.0 * np.cross(u, v)
        return v + self.w * t + np.cross(u, t)

    def to_dcm(self) -> np.ndarray:
        """
        Equivalent 3x3 rotation matrix.

            R = | 1-2(y^2+z^2)    2(xy-wz)      2(xz+wy)   |
                | 2(xy+wz)      1-2(x^2+z^2)    2(yz-wx)   |
                | 2(xz-wy)      2(yz+wx)      1-2(x^2+y^2) |

        Returns
        -------
        np.ndarray
            Proper orthogonal matrix with ``R @ v == rotate_vector(v)``.
        """
        w, x, y, z = self._q

        xx, yy, zz = x * x, y * y, z * z
        xy, xz, yz = x * y, x * z, y * z
        wx, wy, wz = w * x, w * y, w * z

        return np.array([
            [1.0 - 2.0 * (yy + zz), 2.0 * (xy - wz),       2.0 * (xz + wy)],
            [2.0 * (xy + wz),       1.0 - 2.0 * (xx + zz), 2.0 * (yz - wx)],
            [2.0 * (xz - wy),       2.0 * (yz + wx),       1.0 - 2.0 * (xx + yy)],
        ], dtype=np.float64)

    @staticmethod
    def slerp(q1: 'Quaternion', q2: 'Quaternion', t: float) -> 'Quaternion':
        """
        Spherical linear interpolation along the short arc.

        Parameters
        ----------
        q1, q2 : Quaternion
            End points at t=0 and t=1.
        t : float
            Interpolation parameter, clipped to [0, 1].

        Returns
        -------
        Quaternion

        Notes
        -----
        Nearly parallel inputs fall back to normalized linear interpolation
        since sin(Omega) vanishes.
        """
        t = float(np.clip(t, 0.0, 1.0))
        dot = float(np.dot(q1._q, q2._q))

        q2_q = q2._q.copy()
        if dot < 0.0:
            q2_q = -q2_q
            dot = -dot
        dot = min(dot, 1.0)

        if dot > 0.9995:
            result = q1._q + t * (q2_q - q1._q)
            return Quaternion(result[0], result[1], result[2], result[3])

        omega = np.arccos(dot)
        sin_omega = np.sin(omega)
        result = (np.sin((1.0 - t) * omega) * q1._q
                  + np.sin(t * omega) * q2_q) / sin_omega
        return Quaternion(result[0], result[1], result[2], result[3])

    # =========================================================================
    # OPERATORS
    # =========================================================================

    def __mul__(self, other: 'Quaternion') -> 'Quaternion':
        if isinstance(other, Quaternion):
            return self.multiply(other)
        return NotImplemented

    def __eq__(self, other: object) -> bool:
        """Same rotation within tolerance, treating q and -q as equal."""
        if not isinstance(other, Quaternion):
            return NotImplemented

        diff_pos = np.linalg.norm(self._q - other._q)
        diff_neg = np.linalg.norm(self._q + other._q)
        return min(diff_pos, diff_neg) < self._COMPARISON_TOLERANCE

    __hash__ = None

    def __repr__(self) -> str:
        return (f"Quaternion(w={self.w:+.8f}, x={self.x:+.8f}, "
                f"y={self.y:+.8f}, z={self.z:+.8f})")

    def is_unit(self, tolerance: float = 1e-8) -> bool:
        return abs(self.norm - 1.0) < tolerance

    def is_identity(self, tolerance: float = 1e-12) -> bool:
        """True when this is the zero rotation."""
        return float(np.linalg.norm(self._q[1:4])) < tolerance
