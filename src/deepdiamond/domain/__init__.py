from ._device import Device, DeviceType, as_device
from ._errors import (
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
from ._layout import ANY, canonical_tag, default_tag, dense_strides, is_dense
from ._protocols import (
    Backprop,
    CostFactory,
    DiamondFactoryProvider,
    DiffParameters,
    DiffTransfer,
    DnnFactory,
    Parameters,
    TensorEngine,
    TensorFactory,
    Transfer,
)
from ._resource import NativeHandle, Releaseable, let_release, release, with_release
from ._tensor_desc import (
    DATA_TYPES,
    TensorDesc,
    TensorDescriptor,
    data_type_info,
    data_type_of,
    desc_of,
    strides_of,
    tensor_desc,
)

__all__ = [
    "ANY",
    "Backprop",
    "CostFactory",
    "CublasError",
    "CudaError",
    "CudnnError",
    "DATA_TYPES",
    "Device",
    "DeviceMismatchError",
    "DeviceNotSupportedError",
    "DeviceType",
    "DiamondError",
    "DiamondFactoryProvider",
    "DiffParameters",
    "DiffTransfer",
    "DnnFactory",
    "DnnlError",
    "NativeError",
    "NativeHandle",
    "Parameters",
    "Releaseable",
    "TensorDesc",
    "TensorDescriptor",
    "TensorEngine",
    "TensorFactory",
    "Transfer",
    "UnsupportedDataTypeError",
    "UnsupportedOperationError",
    "as_device",
    "canonical_tag",
    "data_type_info",
    "data_type_of",
    "default_tag",
    "dense_strides",
    "desc_of",
    "is_dense",
    "let_release",
    "release",
    "strides_of",
    "tensor_desc",
    "with_release",
]
