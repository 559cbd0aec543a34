import unittest

from deepdiamond.domain._layout import (
    ANY,
    canonical_tag,
    default_tag,
    dense_strides,
    is_dense,
    tag_ndims,
)


class TestCanonicalTag(unittest.TestCase):
    def test_aliases_resolve_to_generic_tags(self) -> None:
        self.assertEqual(canonical_tag("nchw"), "abcd")
        self.assertEqual(canonical_tag("nhwc"), "acdb")
        self.assertEqual(canonical_tag("x"), "a")
        self.assertEqual(canonical_tag("NC"), "ab")

    def test_generic_tag_is_kept(self) -> None:
        self.assertEqual(canonical_tag("acbde"), "acbde")

    def test_unknown_tag_raises(self) -> None:
        for bad in ("", "abd", "aab", "abcdefg", "nope"):
            with self.assertRaises(ValueError):
                canonical_tag(bad)

    def test_tag_ndims(self) -> None:
        self.assertEqual(tag_ndims("oihw"), 4)
        self.assertEqual(tag_ndims("tnc"), 3)


class TestDefaultTag(unittest.TestCase):
    def test_row_major_tags(self) -> None:
        self.assertEqual(default_tag(1), "a")
        self.assertEqual(default_tag(4), "abcd")

    def test_out_of_range(self) -> None:
        with self.assertRaises(ValueError):
            default_tag(0)
        with self.assertRaises(ValueError):
            default_tag(7)


class TestDenseStrides(unittest.TestCase):
    def test_nchw(self) -> None:
        self.assertEqual(dense_strides((2, 3, 4, 5), "nchw"), (60, 20, 5, 1))

    def test_nhwc(self) -> None:
        self.assertEqual(dense_strides((2, 3, 4, 5), "nhwc"), (60, 1, 15, 3))

    def test_column_major_matrix(self) -> None:
        self.assertEqual(dense_strides((2, 3), "cn"), (1, 2))

    def test_rank_mismatch_raises(self) -> None:
        with self.assertRaises(ValueError):
            dense_strides((2, 3), "nchw")


class TestIsDense(unittest.TestCase):
    def test_dense_layouts(self) -> None:
        self.assertTrue(is_dense((2, 3, 4, 5), (60, 20, 5, 1)))
        self.assertTrue(is_dense((2, 3, 4, 5), (60, 1, 15, 3)))

    def test_unit_dimensions_ignore_strides(self) -> None:
        self.assertTrue(is_dense((1, 1, 1, 1), (1, 1, 1, 1)))

    def test_gapped_layout(self) -> None:
        self.assertFalse(is_dense((2, 3), (6, 1)))

    def test_rank_mismatch(self) -> None:
        self.assertFalse(is_dense((2, 3), (3,)))

    def test_any_keyword(self) -> None:
        self.assertEqual(ANY, "any")


if __name__ == "__main__":
    unittest.main()
