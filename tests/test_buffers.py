import unittest

import numpy as np

from fftbench.buffers import TransformBuffers
from fftbench.layout import Placement, Precision, TransformKind, compute_geometry


def _empty_bytes(nbytes):
    return np.empty(nbytes, dtype=np.uint8)


class TestTransformBuffers(unittest.TestCase):

    def test_outplace_allocations(self):
        g = compute_geometry([8], TransformKind.REAL, Placement.OUTPLACE, Precision.SINGLE)
        buffers = TransformBuffers(g, _empty_bytes)
        self.assertEqual(buffers.primary.nbytes, g.data_size)
        self.assertEqual(buffers.secondary.nbytes, g.complex_buffer_size)
        self.assertEqual(buffers.nbytes, g.allocation_size)
        self.assertFalse(buffers.aliased)
        self.assertEqual(buffers.space.shape, (8,))
        self.assertEqual(buffers.space.dtype, np.float32)
        self.assertEqual(buffers.spectrum.shape, (5,))
        self.assertEqual(buffers.spectrum.dtype, np.complex64)
        self.assertFalse(np.shares_memory(buffers.space, buffers.spectrum))

    def test_inplace_real_views_alias(self):
        g = compute_geometry([4, 6], TransformKind.REAL, Placement.INPLACE, Precision.DOUBLE)
        buffers = TransformBuffers(g, _empty_bytes)
        self.assertIsNone(buffers.secondary)
        self.assertTrue(buffers.aliased)
        self.assertEqual(buffers.nbytes, 256)
        self.assertEqual(buffers.space.shape, (4, 6))
        self.assertEqual(buffers.spectrum.shape, (4, 4))
        self.assertEqual(buffers.spectrum.dtype, np.complex128)
        self.assertTrue(np.shares_memory(buffers.space, buffers.spectrum))

    def test_inplace_real_padding_untouched(self):
        g = compute_geometry([4, 6], TransformKind.REAL, Placement.INPLACE, Precision.DOUBLE)
        buffers = TransformBuffers(g, _empty_bytes)
        padded = buffers.primary.view(np.float64).reshape(4, 8)
        padded[...] = -7.0
        buffers.space[...] = 1.0
        self.assertTrue(np.all(padded[:, :6] == 1.0))
        self.assertTrue(np.all(padded[:, 6:] == -7.0))

    def test_inplace_complex_same_view(self):
        g = compute_geometry([4, 4], TransformKind.COMPLEX, Placement.INPLACE, Precision.SINGLE)
        buffers = TransformBuffers(g, _empty_bytes)
        self.assertIs(buffers.space, buffers.spectrum)
        self.assertEqual(buffers.space.dtype, np.complex64)

    def test_half_precision_complex_pairs(self):
        g = compute_geometry([16], TransformKind.COMPLEX, Placement.OUTPLACE, Precision.HALF)
        buffers = TransformBuffers(g, _empty_bytes)
        self.assertEqual(buffers.space.shape, (16, 2))
        self.assertEqual(buffers.space.dtype, np.float16)
        self.assertEqual(buffers.space.nbytes, g.transfer_size)

    def test_release(self):
        g = compute_geometry([8], TransformKind.COMPLEX, Placement.OUTPLACE, Precision.DOUBLE)
        buffers = TransformBuffers(g, _empty_bytes)
        buffers.release()
        self.assertIsNone(buffers.primary)
        self.assertIsNone(buffers.space)
        self.assertIsNone(buffers.spectrum)


if __name__ == '__main__':
    unittest.main()
