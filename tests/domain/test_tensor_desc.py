import unittest

import numpy as np

from deepdiamond.domain._tensor_desc import (
    DATA_TYPES,
    TensorDesc,
    TensorDescriptor,
    data_type_info,
    data_type_of,
    desc_of,
    strides_of,
    tensor_desc,
)


class _Described:
    shape = (2, 3)
    data_type = "double"
    layout = (1, 2)


class TestDataTypes(unittest.TestCase):
    def test_sizes(self) -> None:
        self.assertEqual(DATA_TYPES["float"].size, 4)
        self.assertEqual(DATA_TYPES["double"].size, 8)
        self.assertEqual(DATA_TYPES["half"].size, 2)
        self.assertEqual(DATA_TYPES["uint8"].size, 1)

    def test_aliases(self) -> None:
        self.assertEqual(data_type_info("f32").name, "float")
        self.assertEqual(data_type_info("float64").name, "double")
        self.assertEqual(data_type_info("S32").name, "int")

    def test_unknown_raises(self) -> None:
        with self.assertRaises(ValueError):
            data_type_info("complex")

    def test_from_numpy(self) -> None:
        self.assertEqual(data_type_of(np.float32), "float")
        self.assertEqual(data_type_of(np.dtype("int8")), "byte")
        with self.assertRaises(ValueError):
            data_type_of(np.complex64)


class TestTensorDesc(unittest.TestCase):
    def test_defaults(self) -> None:
        d = tensor_desc([2, 3])
        self.assertEqual(d.shape, (2, 3))
        self.assertEqual(d.data_type, "float")
        self.assertEqual(d.layout, "any")
        self.assertEqual(d.count(), 6)
        self.assertEqual(d.item_size, 4)
        self.assertEqual(d.ndims, 2)

    def test_canonicalizes_data_type(self) -> None:
        self.assertEqual(TensorDesc((4,), "f64").data_type, "double")

    def test_rejects_bad_shapes_and_layouts(self) -> None:
        with self.assertRaises(ValueError):
            TensorDesc(())
        with self.assertRaises(ValueError):
            TensorDesc((2, 0))
        with self.assertRaises(ValueError):
            TensorDesc((2, 3), "float", "nchw")
        with self.assertRaises(ValueError):
            TensorDesc((2, 3), "float", (1,))

    def test_strides_layout_is_tuple(self) -> None:
        d = TensorDesc((2, 3), "float", [3, 1])
        self.assertEqual(d.layout, (3, 1))

    def test_is_a_descriptor(self) -> None:
        self.assertIsInstance(tensor_desc([1]), TensorDescriptor)
        self.assertIsInstance(_Described(), TensorDescriptor)


class TestStridesOf(unittest.TestCase):
    def test_any_is_row_major(self) -> None:
        self.assertEqual(strides_of(tensor_desc([2, 3, 4])), (12, 4, 1))

    def test_tag(self) -> None:
        self.assertEqual(strides_of(tensor_desc([2, 3], "float", "cn")), (1, 2))

    def test_explicit(self) -> None:
        self.assertEqual(strides_of(_Described()), (1, 2))

    def test_desc_of_snapshots(self) -> None:
        d = desc_of(_Described())
        self.assertEqual(d, TensorDesc((2, 3), "double", (1, 2)))
        self.assertIs(desc_of(d), d)


if __name__ == "__main__":
    unittest.main()
