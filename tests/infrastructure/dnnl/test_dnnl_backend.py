"""
End-to-end checks of the DNNL backend.

These tests need the DNNL shared library and are skipped when it cannot be
loaded (see `DEEPDIAMOND_DNNL_LIB`).
"""

import unittest

import numpy as np

from deepdiamond.domain._errors import DiamondError
from deepdiamond.infrastructure.native import native_available


def _require_dnnl() -> None:
    if not native_available("dnnl"):
        raise unittest.SkipTest("DNNL shared library is not available")


class TestDnnlCore(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        _require_dnnl()
        from deepdiamond.infrastructure.dnnl import _core as dnnl

        cls.dnnl = dnnl
        cls.eng = dnnl.engine(0, "cpu")

    @classmethod
    def tearDownClass(cls) -> None:
        cls.eng.release()

    def test_engine(self) -> None:
        self.assertEqual(self.dnnl.engine_kind(self.eng), "cpu")
        self.assertGreaterEqual(self.dnnl.engine_count("cpu"), 1)

    def test_memory_desc(self) -> None:
        dnnl = self.dnnl
        md = dnnl.memory_desc([2, 3, 4, 5], "float", "nchw")
        self.assertEqual(dnnl.dims(md), [2, 3, 4, 5])
        self.assertEqual(dnnl.strides(md), [60, 20, 5, 1])
        self.assertEqual(dnnl.data_type(md), "float")
        self.assertEqual(dnnl.ndims(md), 4)
        self.assertEqual(dnnl.size(md), 2 * 3 * 4 * 5 * 4)

        nhwc = dnnl.memory_desc([2, 3, 4, 5], "float", "nhwc")
        self.assertEqual(dnnl.strides(nhwc), [60, 1, 15, 3])
        self.assertFalse(dnnl.equal_desc(md, nhwc))
        self.assertTrue(dnnl.equal_desc(md, dnnl.memory_desc([2, 3, 4, 5], "f32", [60, 20, 5, 1])))

    def test_submemory_desc(self) -> None:
        dnnl = self.dnnl
        md = dnnl.memory_desc([4, 3], "float", "nc")
        sub = dnnl.submemory_desc(md, 2)
        self.assertEqual(dnnl.dims(sub), [2, 3])
        self.assertEqual(dnnl.strides(sub), [3, 1])

    def test_memory_offset(self) -> None:
        dnnl = self.dnnl
        parent = dnnl.memory_desc([4, 3], "float", "nc")
        buf = np.zeros(dnnl.size(parent), dtype=np.uint8)
        mem = dnnl.memory(self.eng, dnnl.submemory_desc(parent, 2), buf)
        try:
            self.assertEqual(dnnl.offset(mem), 0)
            dnnl.set_offset(mem, 2 * 3 * 4)
            self.assertEqual(dnnl.offset(mem), 24)
            with self.assertRaises(DiamondError):
                dnnl.set_offset(mem, 2 * 3 * 4 + 4)
            with self.assertRaises(DiamondError):
                dnnl.set_offset(mem, -1)
        finally:
            mem.release()

    def test_buffer_too_small(self) -> None:
        dnnl = self.dnnl
        md = dnnl.memory_desc([2, 3], "float", "nc")
        with self.assertRaises(DiamondError):
            dnnl.memory(self.eng, md, np.zeros(8, dtype=np.uint8))

    def test_primitive_kind(self) -> None:
        dnnl = self.dnnl
        md = dnnl.memory_desc([2, 3], "float", "nc")
        self.assertEqual(dnnl.primitive_kind(dnnl.eltwise_fwd_desc("training", "relu", md)), "eltwise")


class DnnlFactoryCase(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        _require_dnnl()
        from deepdiamond.infrastructure.dnnl import dnnl_factory

        cls.fact = dnnl_factory()

    @classmethod
    def tearDownClass(cls) -> None:
        cls.fact.release()

    def tensor(self, values, layout="any", data_type="float"):
        values = np.asarray(values)
        tz = self.fact.create_tensor(self.fact.create_tensor_desc(values.shape, data_type, layout))
        self.addCleanup(tz.release)
        return tz.copy_from_numpy(values)


class TestDnnlTensor(DnnlFactoryCase):
    def test_round_trip_and_layout(self) -> None:
        x = np.arange(24, dtype=np.float32).reshape(2, 3, 4)
        tz = self.tensor(x, "acb")
        self.assertEqual(tz.shape, (2, 3, 4))
        self.assertEqual(tz.layout, (12, 1, 3))
        self.assertEqual(tz.device, "cpu")
        np.testing.assert_array_equal(tz.to_numpy(), x)

    def test_view_shares_data(self) -> None:
        tz = self.tensor(np.zeros((2, 2), dtype=np.float32))
        view = tz.view()
        self.addCleanup(view.release)
        view.copy_from_numpy([[1, 2], [3, 4]])
        np.testing.assert_array_equal(tz.to_numpy(), [[1, 2], [3, 4]])

    def test_transformer(self) -> None:
        x = np.arange(6, dtype=np.float32).reshape(2, 3)
        src = self.tensor(x, "nc")
        dst = self.tensor(np.zeros((2, 3), dtype=np.float32), "cn")
        transformer = self.fact.create_transformer(src, dst)
        self.addCleanup(transformer.release)
        self.assertIs(transformer(), dst)
        np.testing.assert_array_equal(dst.to_numpy(), x)

    def test_batcher(self) -> None:
        x = np.arange(12, dtype=np.float32).reshape(4, 3)
        src = self.tensor(x, "nc")
        dst = self.tensor(np.zeros((2, 3), dtype=np.float32), "cn")
        batcher = self.fact.create_batcher(src, dst, 2)
        self.addCleanup(batcher.release)
        batcher(2, 0)
        np.testing.assert_array_equal(dst.to_numpy(), x[2:4])
        with self.assertRaises(DiamondError):
            batcher(3, 0)

    def test_shuffler(self) -> None:
        x = np.arange(12, dtype=np.float32).reshape(4, 3)
        src = self.tensor(x)
        dst = self.tensor(np.zeros((3, 3), dtype=np.float32))
        shuffler = self.fact.create_shuffler(src, dst)
        self.addCleanup(shuffler.release)
        shuffler([3, 0, 2])
        np.testing.assert_array_equal(dst.to_numpy(), x[[3, 0, 2]])


class TestDnnlTensorEngine(DnnlFactoryCase):
    def setUp(self) -> None:
        self.engine = self.fact.tensor_engine("float")
        self.x = self.tensor(np.array([[1, -2, 3], [-4, 5, -6]], dtype=np.float32))
        self.y = self.tensor(np.array([[10, 20, 30], [40, 50, 60]], dtype=np.float32))

    def test_engine_is_cached(self) -> None:
        self.assertIs(self.fact.tensor_engine("f32"), self.engine)

    def test_axpby(self) -> None:
        self.engine.axpby(2.0, self.x, 0.5, self.y)
        np.testing.assert_allclose(self.y.to_numpy(), [[7, 6, 21], [12, 35, 18]])

    def test_axpy_and_scal(self) -> None:
        self.engine.axpy(-1.0, self.x, self.y)
        self.engine.scal(0.5, self.y)
        np.testing.assert_allclose(self.y.to_numpy(), [[4.5, 11, 13.5], [22, 22.5, 33]])

    def test_copy_across_layouts(self) -> None:
        z = self.tensor(np.zeros((2, 3), dtype=np.float32), "cn")
        self.engine.copy(self.x, z)
        self.assertTrue(self.engine.equals(self.x, z))

    def test_reductions(self) -> None:
        self.assertAlmostEqual(self.engine.sum(self.x), -3.0)
        self.assertAlmostEqual(self.engine.asum(self.x), 21.0)
        self.assertAlmostEqual(self.engine.nrm2(self.x), np.sqrt(91.0), places=5)
        self.assertAlmostEqual(self.engine.amax(self.x), 6.0)

    def test_set_all(self) -> None:
        self.engine.set_all(1.5, self.x)
        np.testing.assert_array_equal(self.x.to_numpy(), np.full((2, 3), 1.5))

    def test_sum_blueprint(self) -> None:
        add = self.fact.create_sum(2.0, 1.0)(self.x, self.y)
        self.addCleanup(add.release)
        self.assertIs(add(), self.y)
        np.testing.assert_allclose(self.y.to_numpy(), [[12, 16, 36], [32, 60, 48]])

    def test_sum_in_place(self) -> None:
        add = self.fact.create_sum(2.0, 1.0)(self.x)
        self.addCleanup(add.release)
        add()
        np.testing.assert_allclose(self.x.to_numpy(), [[3, -6, 9], [-12, 15, -18]])


class TestDnnlLayers(DnnlFactoryCase):
    def test_relu_training(self) -> None:
        z = self.tensor(np.array([[-1.0, 2.0], [3.0, -4.0]], dtype=np.float32))
        a = self.tensor(np.zeros((2, 2), dtype=np.float32))
        bluep = self.fact.activ_blueprint(z, "relu")
        self.addCleanup(bluep.release)
        act = bluep(z, a)
        self.addCleanup(act.release)
        act.forward()
        np.testing.assert_array_equal(a.to_numpy(), [[0, 2], [3, 0]])
        act.diff_input.copy_from_numpy([[5, 6], [7, 8]])
        act.backward()
        np.testing.assert_array_equal(z.to_numpy(), [[0, 6], [7, 0]])

    def test_sigmoid_keeps_a_separate_gradient(self) -> None:
        z = self.tensor(np.array([[-0.5]], dtype=np.float32))
        a = self.tensor(np.zeros((1, 1), dtype=np.float32))
        bluep = self.fact.activ_blueprint(z, "sigmoid")
        self.addCleanup(bluep.release)
        act = bluep(z, a)
        self.addCleanup(act.release)
        self.assertNotEqual(act.diff_input.address, a.address)
        act()
        self.assertAlmostEqual(float(a.to_numpy()[0, 0]), 0.3775407, places=6)

    def test_linear_inference_in_place(self) -> None:
        x = self.tensor(np.array([[1.0, -2.0]], dtype=np.float32))
        bluep = self.fact.activ_blueprint(x, "linear", 3.0)
        self.addCleanup(bluep.release)
        act = bluep(x)
        self.addCleanup(act.release)
        self.assertIs(act(), x)
        np.testing.assert_allclose(x.to_numpy(), [[3.0, -6.0]])

    def test_fully_connected_training(self) -> None:
        rng = np.random.default_rng(1)
        x_np = rng.normal(size=(4, 3)).astype(np.float32)
        w_np = rng.normal(size=(2, 3)).astype(np.float32)
        b_np = np.array([0.5, -0.25], dtype=np.float32)

        x = self.tensor(x_np, "nc")
        bluep = self.fact.fc_blueprint(x, self.fact.create_tensor_desc([4, 2]), "linear")
        self.addCleanup(bluep.release)
        fc = bluep(x, True)
        self.addCleanup(fc.release)
        fc.weights.copy_from_numpy(w_np)
        fc.bias.copy_from_numpy(b_np)

        fc.forward()
        z_np = x_np @ w_np.T + b_np
        np.testing.assert_allclose(fc.output.to_numpy(), z_np, rtol=1e-5, atol=1e-6)

        da = rng.normal(size=(4, 2)).astype(np.float32)
        fc.diff_input.copy_from_numpy(da)
        fc.backward()
        np.testing.assert_allclose(fc.diff_weights.to_numpy(), da.T @ x_np, rtol=1e-4, atol=1e-5)
        np.testing.assert_allclose(fc.diff_bias.to_numpy(), da.sum(axis=0), rtol=1e-4, atol=1e-5)
        np.testing.assert_allclose(fc.diff_output.to_numpy(), da @ w_np, rtol=1e-4, atol=1e-5)

    def test_inner_product_rejects_other_sources(self) -> None:
        x = self.tensor(np.zeros((4, 3), dtype=np.float32), "nc")
        other = self.tensor(np.zeros((4, 3), dtype=np.float32), "cn")
        bluep = self.fact.inner_product_blueprint(x, self.fact.create_tensor_desc([4, 2]))
        self.addCleanup(bluep.release)
        with self.assertRaises(DiamondError):
            bluep(other)

    def test_quadratic_cost(self) -> None:
        x = self.tensor(np.array([[0.5, 0.5]], dtype=np.float32), "nc")
        bluep = self.fact.fc_blueprint(x, self.fact.create_tensor_desc([1, 1]), "linear")
        self.addCleanup(bluep.release)
        fc = bluep(x, False)
        self.addCleanup(fc.release)
        fc.weights.copy_from_numpy([[1.0, 1.0]])
        y = self.tensor(np.array([[3.0]], dtype=np.float32))
        cost = self.fact.quadratic_cost(fc, y)
        self.addCleanup(cost.release)
        fc.forward()
        cost.forward()
        self.assertAlmostEqual(cost(), 2.0, places=5)
        cost.backward()
        np.testing.assert_allclose(fc.diff_weights.to_numpy(), [[-1.0, -1.0]], rtol=1e-5)


if __name__ == "__main__":
    unittest.main()
