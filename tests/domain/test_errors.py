import unittest

from deepdiamond.domain._errors import (
    CublasError,
    CudaError,
    CudnnError,
    DeviceMismatchError,
    DeviceNotSupportedError,
    DiamondError,
    DnnlError,
    NativeError,
    UnsupportedDataTypeError,
    UnsupportedOperationError,
)


class TestNativeErrors(unittest.TestCase):
    def test_messages(self) -> None:
        self.assertEqual(str(DnnlError(2, "invalid-arguments")), "DNNL error 2 invalid-arguments.")
        self.assertEqual(str(CudnnError(3, "bad-param")), "cuDNN error 3 bad-param.")
        self.assertEqual(str(CudaError(2, "memory-allocation")), "CUDA error 2 memory-allocation.")
        self.assertEqual(str(CublasError(7, "invalid-value")), "cuBLAS error 7 invalid-value.")

    def test_attributes_and_info(self) -> None:
        e = DnnlError(3, "unimplemented", {"op": "sum"})
        self.assertEqual(e.code, 3)
        self.assertEqual(e.status, "unimplemented")
        self.assertEqual(e.details, {"op": "sum"})
        self.assertEqual(e.info["error"], "unimplemented")
        self.assertIsInstance(e, NativeError)
        self.assertIsInstance(e, DiamondError)
        self.assertIsInstance(e, RuntimeError)


class TestDiamondErrors(unittest.TestCase):
    def test_info_defaults_to_empty(self) -> None:
        self.assertEqual(DiamondError("x").info, {})

    def test_unsupported_data_type(self) -> None:
        e = UnsupportedDataTypeError("double", "DNNL")
        self.assertEqual(e.data_type, "double")
        self.assertEqual(e.info["backend"], "DNNL")
        self.assertIn("'double'", str(e))

    def test_unsupported_operation(self) -> None:
        msg = "cuDNN engine does not implement inner product blueprint."
        self.assertEqual(str(UnsupportedOperationError(msg)), msg)

    def test_device_errors(self) -> None:
        e = DeviceNotSupportedError("diamond_factory", "tpu")
        self.assertEqual((e.op, e.device), ("diamond_factory", "tpu"))
        m = DeviceMismatchError("cpu", "cuda:0")
        self.assertIn("cuda:0", str(m))


if __name__ == "__main__":
    unittest.main()
