"""
Checks the row-major fully-connected products against NumPy.

The fake cuBLAS below implements column-major gemm on host addresses, so the
operand order, transposes and leading dimensions chosen by the helpers are
verified numerically.
"""

import ctypes
import unittest

import numpy as np

from deepdiamond.domain._errors import CublasError, UnsupportedDataTypeError
from deepdiamond.infrastructure.cudnn._cublas import (
    CublasHandle,
    fc_backward_data,
    fc_backward_weights,
    fc_forward,
    gemm,
)


def _col_major(addr: int, ld: int, cols: int, ctype) -> np.ndarray:
    flat = np.ctypeslib.as_array((ctype * (ld * cols)).from_address(addr))
    return flat.reshape(cols, ld).T


class FakeCublas:
    def __init__(self) -> None:
        self.destroyed = []
        self.status = 0

    def cublasDestroy_v2(self, h) -> int:
        self.destroyed.append(h.value)
        return 0

    def _gemm(self, ctype, h, transa, transb, m, n, k, alpha, a, lda, b, ldb, beta, c, ldc) -> int:
        if self.status:
            return self.status
        A = _col_major(a.value, lda, k if transa == 0 else m, ctype)
        B = _col_major(b.value, ldb, n if transb == 0 else k, ctype)
        C = _col_major(c.value, ldc, n, ctype)
        op_a = A[:m, :k] if transa == 0 else A[:k, :m].T
        op_b = B[:k, :n] if transb == 0 else B[:n, :k].T
        C[:m, :n] = alpha._obj.value * (op_a @ op_b) + beta._obj.value * C[:m, :n]
        return 0

    def cublasSgemm_v2(self, *args) -> int:
        return self._gemm(ctypes.c_float, *args)

    def cublasDgemm_v2(self, *args) -> int:
        return self._gemm(ctypes.c_double, *args)


class TestFullyConnectedProducts(unittest.TestCase):
    def setUp(self) -> None:
        self.lib = FakeCublas()
        self.hdl = CublasHandle(self.lib, 0x77)
        rng = np.random.default_rng(0)
        self.batch, self.n_in, self.n_out = 4, 5, 3
        self.x = rng.normal(size=(self.batch, self.n_in))
        self.w = rng.normal(size=(self.n_out, self.n_in))
        self.dz = rng.normal(size=(self.batch, self.n_out))

    def tearDown(self) -> None:
        self.hdl.release()

    def _args(self):
        return self.hdl, "double", self.batch, self.n_in, self.n_out

    def test_forward(self) -> None:
        z = np.zeros((self.batch, self.n_out))
        fc_forward(*self._args(), self.w.ctypes.data, self.x.ctypes.data, z.ctypes.data)
        np.testing.assert_allclose(z, self.x @ self.w.T, rtol=1e-12)

    def test_forward_accumulates_with_beta(self) -> None:
        z = np.ones((self.batch, self.n_out))
        fc_forward(*self._args(), self.w.ctypes.data, self.x.ctypes.data, z.ctypes.data, beta=2.0)
        np.testing.assert_allclose(z, self.x @ self.w.T + 2.0, rtol=1e-12)

    def test_weights_gradient(self) -> None:
        dw = np.zeros_like(self.w)
        fc_backward_weights(*self._args(), self.x.ctypes.data, self.dz.ctypes.data, dw.ctypes.data)
        np.testing.assert_allclose(dw, self.dz.T @ self.x, rtol=1e-12)

    def test_data_gradient(self) -> None:
        dx = np.zeros_like(self.x)
        fc_backward_data(*self._args(), self.w.ctypes.data, self.dz.ctypes.data, dx.ctypes.data)
        np.testing.assert_allclose(dx, self.dz @ self.w, rtol=1e-12)

    def test_single_precision(self) -> None:
        x, w = self.x.astype(np.float32), self.w.astype(np.float32)
        z = np.zeros((self.batch, self.n_out), dtype=np.float32)
        fc_forward(self.hdl, "float", self.batch, self.n_in, self.n_out, w.ctypes.data, x.ctypes.data, z.ctypes.data)
        np.testing.assert_allclose(z, x @ w.T, rtol=1e-5)


class TestGemm(unittest.TestCase):
    def setUp(self) -> None:
        self.lib = FakeCublas()
        self.hdl = CublasHandle(self.lib, 0x78)

    def test_unsupported_data_type(self) -> None:
        with self.assertRaises(UnsupportedDataTypeError):
            gemm(self.hdl, "half", "n", "n", 1, 1, 1, 1.0, 0, 1, 0, 1, 0.0, 0, 1)

    def test_status_is_checked(self) -> None:
        self.lib.status = 7
        a = np.zeros(1)
        with self.assertRaises(CublasError) as cm:
            gemm(self.hdl, "double", "n", "n", 1, 1, 1, 1.0, a.ctypes.data, 1, a.ctypes.data, 1, 0.0, a.ctypes.data, 1)
        self.assertEqual(cm.exception.status, "invalid-value")

    def test_handle_is_destroyed_once(self) -> None:
        self.hdl.release()
        self.hdl.release()
        self.assertEqual(self.lib.destroyed, [0x78])


if __name__ == "__main__":
    unittest.main()
