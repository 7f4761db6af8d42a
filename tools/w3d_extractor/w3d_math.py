"""Matrix and quaternion helpers.

Matrices are 4x4 numpy arrays acting on column vectors (p' = M @ p), so the
translation lives in column 3. Quaternions are stored x, y, z, w as in the
W3D files.
"""
import math

import numpy as np

IDENTITY_QUAT = np.array([0.0, 0.0, 0.0, 1.0])


def translation_matrix(v) -> np.ndarray:
    m = np.eye(4)
    m[:3, 3] = v
    return m


def quat_normalize(q) -> np.ndarray:
    q = np.asarray(q, dtype=np.float64)
    n = np.linalg.norm(q)
    if n == 0.0:
        return IDENTITY_QUAT.copy()
    return q / n


def quat_to_matrix(q) -> np.ndarray:
    """Quaternion (x,y,z,w) to 4x4 rotation matrix."""
    x, y, z, w = quat_normalize(q)
    m = np.eye(4)
    m[0, 0] = 1 - 2 * (y * y + z * z)
    m[0, 1] = 2 * (x * y - z * w)
    m[0, 2] = 2 * (x * z + y * w)
    m[1, 0] = 2 * (x * y + z * w)
    m[1, 1] = 1 - 2 * (x * x + z * z)
    m[1, 2] = 2 * (y * z - x * w)
    m[2, 0] = 2 * (x * z - y * w)
    m[2, 1] = 2 * (y * z + x * w)
    m[2, 2] = 1 - 2 * (x * x + y * y)
    return m


def lerp(a: float, b: float, t: float) -> float:
    return a + (b - a) * t


def slerp(q0, q1, t: float) -> np.ndarray:
    """Spherical interpolation along the shortest arc. Always returns a unit quaternion."""
    q0 = quat_normalize(q0)
    q1 = quat_normalize(q1)
    dot = float(np.dot(q0, q1))
    if dot < 0:
        q1 = -q1
        dot = -dot
    dot = min(dot, 1.0)
    if dot > 0.9995:
        return quat_normalize(q0 + t * (q1 - q0))
    theta = math.acos(dot)
    sin_theta = math.sin(theta)
    a = math.sin((1 - t) * theta) / sin_theta
    b = math.sin(t * theta) / sin_theta
    return quat_normalize(a * q0 + b * q1)


def normal_matrix(m: np.ndarray) -> np.ndarray:
    """Inverse transpose of the upper 3x3, for transforming normals."""
    return np.linalg.inv(m[:3, :3]).T


def transform_points(m: np.ndarray, points: np.ndarray) -> np.ndarray:
    """Apply a 4x4 matrix to an (N, 3) array of points."""
    if len(points) == 0:
        return points
    return points @ m[:3, :3].T + m[:3, 3]


def transform_normals(m: np.ndarray, normals: np.ndarray) -> np.ndarray:
    """Apply the normal matrix of m to an (N, 3) array and renormalize."""
    if len(normals) == 0:
        return normals
    out = normals @ normal_matrix(m).T
    lengths = np.linalg.norm(out, axis=1, keepdims=True)
    lengths[lengths == 0.0] = 1.0
    return out / lengths
