import unittest

import numpy as np

from deepdiamond.domain import Backprop, DiffTransfer, Transfer
from deepdiamond.domain._errors import DeviceMismatchError
from deepdiamond.domain._tensor_desc import DATA_TYPES, strides_of, tensor_desc
from deepdiamond.infrastructure._connector import (
    IdentityConnector,
    TransformingConnector,
    connector,
    connector_into,
    matches,
)
from deepdiamond.infrastructure._cost import (
    CustomCost,
    UniversalCost,
    cost_layer,
    mean_absolute_cost,
    quadratic_cost,
    sigmoid_crossentropy_cost,
)


class NpTensor:
    """Host tensor with the attributes the shared layers rely on."""

    def __init__(self, shape, data_type="float", layout="any", device="cpu") -> None:
        self.shape = tuple(shape)
        self.data_type = data_type
        self.layout = strides_of(tensor_desc(shape, data_type, layout))
        self.device = device
        self.data = np.zeros(self.shape, dtype=DATA_TYPES[data_type].numpy)
        self.released = False

    def count(self) -> int:
        return int(self.data.size)

    def to_numpy(self) -> np.ndarray:
        return self.data.copy()

    def release(self) -> bool:
        self.released = True
        return True


class NpTransformer:
    def __init__(self, in_tz: NpTensor, out_tz: NpTensor) -> None:
        self.input = in_tz
        self.output = out_tz
        self.calls = 0

    def __call__(self) -> NpTensor:
        self.calls += 1
        self.output.data[...] = self.input.data
        return self.output

    def release(self) -> bool:
        return True


class NpEngine:
    def copy(self, x, y):
        if x is not y:
            y.data[...] = x.data
        return y

    def axpy(self, alpha, x, y):
        y.data += alpha * x.data
        return y

    def nrm2(self, x) -> float:
        return float(np.linalg.norm(x.data.ravel()))

    def asum(self, x) -> float:
        return float(np.abs(x.data).sum())


class NpFactory:
    device = "cpu"

    def __init__(self) -> None:
        self.created: list[NpTensor] = []
        self.engine = NpEngine()

    def create_tensor(self, desc, init=True) -> NpTensor:
        tz = NpTensor(desc.shape, desc.data_type, desc.layout)
        self.created.append(tz)
        return tz

    def create_transformer(self, in_tz, out_tz) -> NpTransformer:
        return NpTransformer(in_tz, out_tz)

    def tensor_engine(self, data_type: str) -> NpEngine:
        return self.engine


class PrevLayer:
    def __init__(self, a: np.ndarray, layout="any", device="cpu") -> None:
        self.output = NpTensor(a.shape, "float", layout, device)
        self.output.data[...] = a
        self.diff_input = NpTensor(a.shape, "float", layout, device)
        self.backward_calls = 0

    def backward(self) -> "PrevLayer":
        self.backward_calls += 1
        return self


A = np.array([[0.5, 0.2, 0.7], [0.1, 0.9, 0.4]], dtype=np.float32)
Y = np.array([[1.0, 0.0, 1.0], [0.0, 1.0, 0.0]], dtype=np.float32)


def _train(layout="any") -> NpTensor:
    y = NpTensor(Y.shape, "float", layout)
    y.data[...] = Y
    return y


class TestCostFunctions(unittest.TestCase):
    def test_quadratic(self) -> None:
        a_y = NpTensor((2, 3))
        a_y.data[...] = A - Y
        expected = np.sum((A - Y) ** 2) / (2 * 6)
        self.assertAlmostEqual(quadratic_cost(NpEngine(), a_y), expected, places=6)

    def test_mean_absolute(self) -> None:
        a_y = NpTensor((2, 3))
        a_y.data[...] = A - Y
        self.assertAlmostEqual(mean_absolute_cost(NpEngine(), a_y), np.abs(A - Y).mean(), places=6)

    def test_sigmoid_crossentropy(self) -> None:
        a, y = A.astype(np.float64), Y.astype(np.float64)
        expected = -np.sum(y * np.log(a) + (1 - y) * np.log(1 - a)) / 2
        self.assertAlmostEqual(sigmoid_crossentropy_cost(2, Y, A), expected, places=6)


class TestCostLayers(unittest.TestCase):
    def setUp(self) -> None:
        self.fact = NpFactory()

    def test_quadratic_layer(self) -> None:
        prev = PrevLayer(A)
        cost = cost_layer(self.fact, prev, _train(), "quadratic")
        self.assertIsInstance(cost, UniversalCost)
        for contract in (Backprop, Transfer, DiffTransfer):
            self.assertIsInstance(cost, contract)
        self.assertEqual(self.fact.created, [])
        self.assertAlmostEqual(cost(), np.sum((A - Y) ** 2) / 12, places=6)
        np.testing.assert_allclose(prev.diff_input.data, A - Y, rtol=1e-6)

    def test_difference_is_taken_once_per_forward(self) -> None:
        prev = PrevLayer(A)
        cost = cost_layer(self.fact, prev, _train(), "mean-absolute")
        first = cost()
        self.assertAlmostEqual(cost(), first, places=6)
        cost.backward()
        np.testing.assert_allclose(prev.diff_input.data, A - Y, rtol=1e-6)
        self.assertEqual(prev.backward_calls, 1)
        self.assertIs(cost.diff_output, prev.diff_input)

    def test_forward_resets_difference(self) -> None:
        prev = PrevLayer(A)
        cost = cost_layer(self.fact, prev, _train(), "quadratic")
        cost.backward()
        prev.output.data[...] = Y
        cost.forward()
        self.assertAlmostEqual(cost(), 0.0, places=6)
        np.testing.assert_allclose(prev.diff_input.data, 0.0)

    def test_call_sees_the_current_output(self) -> None:
        prev = PrevLayer(A)
        cost = cost_layer(self.fact, prev, _train(), "quadratic")
        cost()
        cost.backward()
        prev.output.data[...] = Y
        self.assertAlmostEqual(cost(), 0.0, places=6)
        cost.backward()
        np.testing.assert_allclose(prev.diff_input.data, 0.0)
        self.assertEqual(prev.backward_calls, 2)

    def test_call_after_forward_sees_a_later_output(self) -> None:
        prev = PrevLayer(A)
        cost = cost_layer(self.fact, prev, _train("cn"), "mean-absolute")
        cost.forward()
        prev.output.data[...] = Y
        self.assertAlmostEqual(cost(), 0.0, places=6)

    def test_sigmoid_crossentropy_connects_output_on_call(self) -> None:
        prev = PrevLayer(A)
        cost = cost_layer(self.fact, prev, _train("cn"), "sigmoid-crossentropy")
        a, y = A.astype(np.float64), Y.astype(np.float64)
        expected = -np.sum(y * np.log(a) + (1 - y) * np.log(1 - a)) / 2
        self.assertAlmostEqual(cost(), expected, places=5)
        prev.output.data[...] = 0.5
        self.assertAlmostEqual(cost(), 3 * np.log(2.0), places=5)

    def test_sigmoid_crossentropy_layer(self) -> None:
        prev = PrevLayer(A)
        cost = cost_layer(self.fact, prev, _train(), "sigmoid-crossentropy")
        self.assertIsInstance(cost, CustomCost)
        a, y = A.astype(np.float64), Y.astype(np.float64)
        expected = -np.sum(y * np.log(a) + (1 - y) * np.log(1 - a)) / 2
        self.assertAlmostEqual(cost(), expected, places=5)
        np.testing.assert_allclose(prev.diff_input.data, 0.0)
        cost.backward()
        np.testing.assert_allclose(prev.diff_input.data, A - Y, rtol=1e-6)

    def test_layout_mismatch_goes_through_transformers(self) -> None:
        prev = PrevLayer(A)
        y = _train("cn")
        cost = cost_layer(self.fact, prev, y, "quadratic")
        self.assertEqual(len(self.fact.created), 2)
        cost.forward()
        self.assertAlmostEqual(cost(), np.sum((A - Y) ** 2) / 12, places=6)
        cost.backward()
        np.testing.assert_allclose(prev.diff_input.data, A - Y, rtol=1e-6)
        self.assertEqual(cost.output.layout, y.layout)
        cost.release()
        self.assertTrue(all(t.released for t in self.fact.created))

    def test_device_mismatch(self) -> None:
        prev = PrevLayer(A, device="cuda:0")
        with self.assertRaises(DeviceMismatchError):
            cost_layer(self.fact, prev, _train(), "quadratic")

    def test_unknown_cost(self) -> None:
        with self.assertRaises(ValueError):
            cost_layer(self.fact, PrevLayer(A), _train(), "hinge")


class TestConnectors(unittest.TestCase):
    def setUp(self) -> None:
        self.fact = NpFactory()

    def test_matches(self) -> None:
        tz = NpTensor((2, 3), "float", "nc")
        self.assertTrue(matches(tz, tensor_desc([2, 3], "float", "any")))
        self.assertTrue(matches(tz, tensor_desc([2, 3], "f32", (3, 1))))
        self.assertFalse(matches(tz, tensor_desc([2, 3], "float", "cn")))
        self.assertFalse(matches(tz, tensor_desc([2, 3], "double")))
        self.assertFalse(matches(tz, tensor_desc([3, 2])))

    def test_identity_connector(self) -> None:
        tz = NpTensor((2, 3))
        conn = connector(self.fact, tz, tensor_desc([2, 3]))
        self.assertIsInstance(conn, IdentityConnector)
        self.assertIs(conn(), tz)
        self.assertIs(conn.input, conn.output)

    def test_transforming_connector(self) -> None:
        src = NpTensor((2, 3))
        src.data[...] = A
        conn = connector(self.fact, src, tensor_desc([2, 3], "double", "cn"))
        self.assertIsInstance(conn, TransformingConnector)
        out = conn()
        self.assertEqual(out.data_type, "double")
        np.testing.assert_allclose(out.data, A, rtol=1e-7)
        conn.release()
        self.assertTrue(out.released)
        self.assertFalse(src.released)

    def test_connector_into_creates_the_input(self) -> None:
        dst = NpTensor((2, 3), "float", "cn")
        conn = connector_into(self.fact, tensor_desc([2, 3], "float", "nc"), dst)
        self.assertIs(conn.output, dst)
        self.assertEqual(conn.input.layout, (3, 1))


if __name__ == "__main__":
    unittest.main()
