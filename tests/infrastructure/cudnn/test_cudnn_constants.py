import unittest

from deepdiamond.infrastructure.cudnn._constants import (
    dec_activation_mode,
    dec_cublas_status,
    dec_cuda_status,
    dec_data_type,
    dec_reduce_tensor_op,
    dec_status,
    enc_activation_mode,
    enc_cublas_operation,
    enc_data_type,
    enc_indices_type,
    enc_memcpy_kind,
    enc_nan_propagation,
    enc_reduce_tensor_indices,
    enc_reduce_tensor_op,
    enc_tensor_format,
)


class TestCudnnKeywords(unittest.TestCase):
    def test_data_types(self) -> None:
        self.assertEqual(enc_data_type("float"), 0)
        self.assertEqual(enc_data_type("double"), 1)
        self.assertEqual(enc_data_type("f16"), 2)
        self.assertEqual(dec_data_type(10), "long")
        with self.assertRaises(ValueError):
            enc_data_type("quad")

    def test_activation_modes(self) -> None:
        self.assertEqual(enc_activation_mode("sigmoid"), 0)
        self.assertEqual(dec_activation_mode(0), "logistic")
        self.assertEqual(enc_activation_mode("linear"), 5)
        self.assertEqual(dec_activation_mode(5), "identity")
        self.assertEqual(enc_activation_mode("clipped_relu"), 3)
        with self.assertRaises(ValueError):
            enc_activation_mode("softmax")

    def test_reduce_ops(self) -> None:
        self.assertEqual(enc_reduce_tensor_op("add"), 0)
        self.assertEqual(enc_reduce_tensor_op("norm2"), 7)
        self.assertEqual(dec_reduce_tensor_op(8), "mul-no-zeros")

    def test_flags(self) -> None:
        self.assertEqual(enc_nan_propagation(True), 1)
        self.assertEqual(enc_nan_propagation(False), 0)
        self.assertEqual(enc_reduce_tensor_indices(False), 0)
        self.assertEqual(enc_indices_type("32bit"), 0)
        self.assertEqual(enc_tensor_format("nhwc"), 1)

    def test_runtime_tables(self) -> None:
        self.assertEqual(enc_memcpy_kind("host-to-device"), 1)
        self.assertEqual(enc_memcpy_kind("device_to_host"), 2)
        self.assertEqual(enc_cublas_operation("t"), 1)

    def test_status_decoding(self) -> None:
        self.assertEqual(dec_status(3), "bad-param")
        self.assertEqual(dec_cuda_status(100), "no-device")
        self.assertEqual(dec_cublas_status(7), "invalid-value")
        self.assertEqual(dec_status(1234), "unknown")


if __name__ == "__main__":
    unittest.main()
