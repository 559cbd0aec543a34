import unittest
from unittest import mock

from deepdiamond import DeviceNotSupportedError, diamond_factory
from deepdiamond.domain._device import Device


class TestDiamondFactory(unittest.TestCase):
    def test_unknown_device(self) -> None:
        for device in ("tpu", "cuda:x", "cuda:-1", ""):
            with self.assertRaises(DeviceNotSupportedError) as cm:
                diamond_factory(device)
            self.assertEqual(cm.exception.op, "diamond_factory")
            self.assertEqual(cm.exception.device, device)

    def test_cpu_goes_to_dnnl(self) -> None:
        with mock.patch("deepdiamond.infrastructure.dnnl.dnnl_factory") as fact:
            self.assertIs(diamond_factory("cpu", lib_path="libdnnl.so.1"), fact.return_value)
        fact.assert_called_once_with(lib_path="libdnnl.so.1")

    def test_default_device_is_cpu(self) -> None:
        with mock.patch("deepdiamond.infrastructure.dnnl.dnnl_factory") as fact:
            diamond_factory()
        fact.assert_called_once_with()

    def test_cuda_goes_to_cudnn(self) -> None:
        with mock.patch("deepdiamond.infrastructure.cudnn.cudnn_factory") as fact:
            self.assertIs(diamond_factory("cuda:2"), fact.return_value)
            diamond_factory(Device("cuda"))
        self.assertEqual(fact.call_args_list, [mock.call(device=2), mock.call(device=0)])


if __name__ == "__main__":
    unittest.main()
