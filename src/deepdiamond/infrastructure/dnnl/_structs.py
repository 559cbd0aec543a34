"""
ctypes mirrors of the DNNL v1.x structures passed by pointer.

Layouts follow `dnnl_types.h`. Only the operation descriptors used by this
package (eltwise, inner product) are declared.
"""

from __future__ import annotations

import ctypes
from ctypes import c_char, c_float, c_int, c_int64, c_size_t, c_uint, c_uint64, c_void_p

MAX_NDIMS = 12
RNN_MAX_N_PARTS = 4

dnnl_dim_t = c_int64
dnnl_dims_t = dnnl_dim_t * MAX_NDIMS


class dnnl_blocking_desc_t(ctypes.Structure):
    _fields_ = [
        ("strides", dnnl_dims_t),
        ("inner_nblks", c_int),
        ("inner_blks", dnnl_dims_t),
        ("inner_idxs", dnnl_dims_t),
    ]


class dnnl_wino_desc_t(ctypes.Structure):
    _fields_ = [
        ("wino_format", c_int),
        ("r", c_int),
        ("alpha", c_int),
        ("ic", c_int),
        ("oc", c_int),
        ("ic_block", c_int),
        ("oc_block", c_int),
        ("ic2_block", c_int),
        ("oc2_block", c_int),
        ("adj_scale", c_float),
        ("size", c_size_t),
    ]


class dnnl_rnn_packed_desc_t(ctypes.Structure):
    _fields_ = [
        ("format", c_int),
        ("n_parts", c_int),
        ("n", c_int),
        ("ldb", c_int),
        ("parts", c_int * RNN_MAX_N_PARTS),
        ("part_pack_size", c_size_t * RNN_MAX_N_PARTS),
        ("pack_part", c_uint * RNN_MAX_N_PARTS),
        ("offset_compensation", c_size_t),
        ("size", c_size_t),
        ("reserved", c_char * 200),
    ]


class dnnl_memory_extra_desc_t(ctypes.Structure):
    _fields_ = [
        ("flags", c_uint64),
        ("compensation_mask", c_int),
        ("scale_adjust", c_float),
        ("reserved", c_char * 64),
    ]


class _format_desc(ctypes.Union):
    _fields_ = [
        ("blocking", dnnl_blocking_desc_t),
        ("wino_desc", dnnl_wino_desc_t),
        ("rnn_packed_desc", dnnl_rnn_packed_desc_t),
    ]


class dnnl_memory_desc_t(ctypes.Structure):
    _fields_ = [
        ("ndims", c_int),
        ("dims", dnnl_dims_t),
        ("data_type", c_int),
        ("padded_dims", dnnl_dims_t),
        ("padded_offsets", dnnl_dims_t),
        ("offset0", dnnl_dim_t),
        ("format_kind", c_int),
        ("format_desc", _format_desc),
        ("extra", dnnl_memory_extra_desc_t),
    ]


class dnnl_eltwise_desc_t(ctypes.Structure):
    _fields_ = [
        ("primitive_kind", c_int),
        ("prop_kind", c_int),
        ("alg_kind", c_int),
        ("data_desc", dnnl_memory_desc_t),
        ("diff_data_desc", dnnl_memory_desc_t),
        ("alpha", c_float),
        ("beta", c_float),
    ]


class dnnl_inner_product_desc_t(ctypes.Structure):
    _fields_ = [
        ("primitive_kind", c_int),
        ("prop_kind", c_int),
        ("src_desc", dnnl_memory_desc_t),
        ("diff_src_desc", dnnl_memory_desc_t),
        ("weights_desc", dnnl_memory_desc_t),
        ("diff_weights_desc", dnnl_memory_desc_t),
        ("bias_desc", dnnl_memory_desc_t),
        ("diff_bias_desc", dnnl_memory_desc_t),
        ("dst_desc", dnnl_memory_desc_t),
        ("diff_dst_desc", dnnl_memory_desc_t),
        ("accum_data_type", c_int),
    ]


class dnnl_exec_arg_t(ctypes.Structure):
    _fields_ = [("arg", c_int), ("memory", c_void_p)]


OP_DESCS = (dnnl_eltwise_desc_t, dnnl_inner_product_desc_t)
