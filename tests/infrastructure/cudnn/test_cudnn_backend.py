"""
End-to-end checks of the cuDNN backend.

These tests need the CUDA runtime, cuDNN, cuBLAS and a visible GPU; they are
skipped otherwise.
"""

import unittest

import numpy as np

from deepdiamond.domain._errors import CudnnError, UnsupportedOperationError
from deepdiamond.domain._resource import with_release
from deepdiamond.infrastructure.native import native_available


def _require_gpu() -> None:
    for name in ("cudart", "cudnn", "cublas"):
        if not native_available(name):
            raise unittest.SkipTest(f"{name} shared library is not available")
    from deepdiamond.infrastructure.cudnn import cudart_lib, device_count

    if device_count(cudart_lib()) == 0:
        raise unittest.SkipTest("No CUDA device is visible")


class TestCudnnCore(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        _require_gpu()
        from deepdiamond.infrastructure.cudnn import _core as cudnn
        from deepdiamond.infrastructure.cudnn import _cuda_runtime as cuda

        cls.cudnn = cudnn
        cls.cuda = cuda
        cls.lib = cuda.cudart_lib()
        cls.hdl = cudnn.cudnn_handle(None)

    @classmethod
    def tearDownClass(cls) -> None:
        cls.hdl.release()

    def upload(self, values: np.ndarray):
        values = np.ascontiguousarray(values, dtype=np.float32)
        buf = self.cuda.malloc(self.lib, values.nbytes)
        self.addCleanup(buf.release)
        self.cuda.memcpy_htod(self.lib, buf, values)
        return buf

    def download(self, buf, n: int) -> np.ndarray:
        return self.cuda.memcpy_dtoh(self.lib, np.zeros(n, dtype=np.float32), buf)

    def test_relu_descriptor(self) -> None:
        with with_release(self.cudnn.activation_descriptor("relu", True, 42.0)) as (ad,):
            self.assertEqual(
                self.cudnn.get_activation_descriptor(ad),
                {"mode": "relu", "relu_nan_opt": True, "coef": 42.0},
            )

    def test_relu_forward_and_backward(self) -> None:
        cudnn = self.cudnn
        x_np = np.zeros(120, dtype=np.float32)
        x_np[:72] = np.arange(-2, 70)
        x = self.upload(x_np)
        y = self.upload(np.arange(120))
        with with_release(
            cudnn.activation_descriptor("relu", True, 42.0),
            cudnn.tensor_descriptor([2, 3, 4, 5], "float", "nchw"),
        ) as (ad, td):
            cudnn.activation_forward(self.hdl, ad, 3.0, td, x, 2.0, td, y)
            np.testing.assert_allclose(self.download(y, 120)[:5], [0, 2, 4, 9, 14])

            dx = self.upload((np.arange(120) - 60) * 0.1)
            dy = self.upload((np.arange(120) - 60) * 0.01)
            cudnn.activation_backward(self.hdl, ad, 300.0, td, y, td, dy, td, x, 200.0, td, dx)
            np.testing.assert_allclose(
                self.download(dx, 120)[:5], [-1200, -1180, -1160, -1311, -1288], rtol=1e-5
            )

    def test_sigmoid_forward_and_backward(self) -> None:
        cudnn = self.cudnn
        x = self.upload(np.array([-0.5]))
        y = self.upload(np.zeros(1))
        dy = self.upload(np.array([-0.1]))
        dx = self.upload(np.zeros(1))
        with with_release(
            cudnn.activation_descriptor("sigmoid"),
            cudnn.tensor_descriptor([1, 1, 1, 1], "float", "nchw"),
        ) as (ad, td):
            cudnn.activation_forward(self.hdl, ad, 1.0, td, x, 0.0, td, y)
            self.assertAlmostEqual(float(self.download(y, 1)[0]), 0.3775407, places=6)
            cudnn.activation_backward(self.hdl, ad, 1.0, td, y, td, dy, td, x, 0.0, td, dx)
            self.assertAlmostEqual(float(self.download(dx, 1)[0]), -0.02350037172436714, places=6)

    def test_identity_forward_is_rejected(self) -> None:
        cudnn = self.cudnn
        x = self.upload(np.array([1.0]))
        with with_release(
            cudnn.activation_descriptor("identity"),
            cudnn.tensor_descriptor([1, 1, 1, 1], "float", [1, 1, 1, 1]),
        ) as (ad, td):
            with self.assertRaises(CudnnError):
                cudnn.activation_forward(self.hdl, ad, 1.0, td, x, 0.0, td, x)

    def _reduce(self, op: str, alpha: float, beta: float) -> float:
        cudnn = self.cudnn
        x = self.upload(np.arange(1, 7))
        y = self.upload(np.zeros(1))
        with with_release(
            cudnn.reduce_tensor_descriptor(op),
            cudnn.tensor_descriptor([2, 3, 1, 1]),
            cudnn.tensor_descriptor([1, 1, 1, 1]),
        ) as (rd, dx, dy):
            cudnn.reduce_tensor(self.hdl, rd, alpha, dx, x, beta, dy, y)
        return float(self.download(y, 1)[0])

    def test_reductions(self) -> None:
        self.assertAlmostEqual(self._reduce("add", 3.0, 2.0), 63.0, places=4)
        self.assertAlmostEqual(self._reduce("max", 2.5, 0.0), 15.0, places=4)
        self.assertAlmostEqual(self._reduce("mul", 1.5, 0.0), 1080.0, places=3)


class TestCudnnFactory(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        _require_gpu()
        from deepdiamond.infrastructure.cudnn import cudnn_factory

        cls.fact = cudnn_factory()

    @classmethod
    def tearDownClass(cls) -> None:
        cls.fact.release()

    def tensor(self, values, layout="any", data_type="float"):
        values = np.asarray(values)
        tz = self.fact.create_tensor(self.fact.create_tensor_desc(values.shape, data_type, layout))
        self.addCleanup(tz.release)
        return tz.copy_from_numpy(values)

    def test_device(self) -> None:
        self.assertEqual(self.fact.device, "cuda:0")
        self.assertEqual(self.tensor(np.zeros((1, 1))).device, "cuda:0")

    def test_tensor_round_trip_across_layouts(self) -> None:
        x = np.arange(120, dtype=np.float32).reshape(2, 3, 4, 5)
        src = self.tensor(x, "nchw")
        dst = self.tensor(np.zeros_like(x), "nhwc")
        transformer = self.fact.create_transformer(src, dst)
        self.addCleanup(transformer.release)
        transformer()
        np.testing.assert_array_equal(dst.to_numpy(), x)

    def test_tensor_engine(self) -> None:
        engine = self.fact.tensor_engine("float")
        x = self.tensor(np.array([[1, -2, 3], [-4, 5, -6]], dtype=np.float32))
        y = self.tensor(np.ones((2, 3), dtype=np.float32))
        self.assertAlmostEqual(engine.sum(x), -3.0, places=5)
        self.assertAlmostEqual(engine.asum(x), 21.0, places=5)
        self.assertAlmostEqual(engine.nrm2(x), np.sqrt(91.0), places=4)
        self.assertAlmostEqual(engine.amax(x), 6.0, places=5)
        engine.axpy(2.0, x, y)
        np.testing.assert_allclose(y.to_numpy(), [[3, -3, 7], [-7, 11, -11]])
        with self.assertRaises(UnsupportedOperationError):
            engine.relu(0.0, x, y)

    def test_batcher(self) -> None:
        x = np.arange(12, dtype=np.float32).reshape(4, 3)
        src = self.tensor(x)
        dst = self.tensor(np.zeros((2, 3), dtype=np.float32))
        batcher = self.fact.create_batcher(src, dst, 2)
        self.addCleanup(batcher.release)
        batcher(1, 0)
        np.testing.assert_array_equal(dst.to_numpy(), x[1:3])

    def test_inner_product_blueprint_is_unsupported(self) -> None:
        desc = self.fact.create_tensor_desc([2, 3])
        with self.assertRaises(UnsupportedOperationError):
            self.fact.inner_product_blueprint(desc, self.fact.create_tensor_desc([2, 1]))

    def test_fully_connected_training(self) -> None:
        rng = np.random.default_rng(2)
        x_np = rng.normal(size=(4, 3)).astype(np.float32)
        w_np = rng.normal(size=(2, 3)).astype(np.float32)
        b_np = np.array([0.5, -0.25], dtype=np.float32)

        x = self.tensor(x_np, "nc")
        bluep = self.fact.fc_blueprint(x, self.fact.create_tensor_desc([4, 2]), "relu")
        self.addCleanup(bluep.release)
        fc = bluep(x, True)
        self.addCleanup(fc.release)
        fc.weights.copy_from_numpy(w_np)
        fc.bias.copy_from_numpy(b_np)

        fc.forward()
        z_np = x_np @ w_np.T + b_np
        np.testing.assert_allclose(fc.output.to_numpy(), np.maximum(z_np, 0), rtol=1e-5, atol=1e-6)

        da = rng.normal(size=(4, 2)).astype(np.float32)
        fc.diff_input.copy_from_numpy(da)
        fc.backward()
        dz = da * (z_np > 0)
        np.testing.assert_allclose(fc.diff_weights.to_numpy(), dz.T @ x_np, rtol=1e-4, atol=1e-5)
        np.testing.assert_allclose(fc.diff_bias.to_numpy(), dz.sum(axis=0), rtol=1e-4, atol=1e-5)
        np.testing.assert_allclose(fc.diff_output.to_numpy(), dz @ w_np, rtol=1e-4, atol=1e-5)

    def test_native_factory_is_dnnl(self) -> None:
        if not native_available("dnnl"):
            self.skipTest("DNNL shared library is not available")
        native = self.fact.native_diamond_factory()
        self.assertEqual(native.device, "cpu")
        self.assertIs(self.fact.native_diamond_factory(), native)


if __name__ == "__main__":
    unittest.main()
