import unittest

from deepdiamond.infrastructure._keywords import decoder, enc_keyword, mask, normalize

TABLE = {"in-order": 0x2, "out-of-order": 0x4, "default-order": 0x1, "alias": 0x2}


class TestKeywords(unittest.TestCase):
    def test_normalize(self) -> None:
        self.assertEqual(normalize("Backward_Data"), "backward-data")

    def test_encode_accepts_underscores(self) -> None:
        self.assertEqual(enc_keyword(TABLE, "in_order", "stream flag"), 0x2)

    def test_unknown_keyword_names_table_and_keys(self) -> None:
        with self.assertRaises(ValueError) as cm:
            enc_keyword(TABLE, "sideways", "stream flag")
        msg = str(cm.exception)
        self.assertIn("stream flag", msg)
        self.assertIn("out-of-order", msg)

    def test_mask(self) -> None:
        self.assertEqual(mask(TABLE, ["in-order", "default-order"]), 0x3)
        self.assertEqual(mask(TABLE, []), 0)

    def test_decoder_prefers_first_key(self) -> None:
        dec = decoder(TABLE, "stream flag")
        self.assertEqual(dec(0x2), "in-order")
        self.assertEqual(dec.__name__, "dec_stream_flag")
        with self.assertRaises(ValueError):
            dec(0x40)


if __name__ == "__main__":
    unittest.main()
