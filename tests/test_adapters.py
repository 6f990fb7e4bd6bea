import os
import shutil
import tempfile
import unittest

import numpy as np

import fftbench
from fftbench.backends import AdapterState, Direction, PlanReuse
from fftbench.backends.fftw import FftwAdapter, FftwContext, import_wisdom, select_threads
from fftbench.backends.pocketfft import NumpyAdapter, ScipyAdapter
from fftbench.context import HostContext
from fftbench.errors import BackendError, CapabilityError, ContextError, LifecycleError
from fftbench.layout import Placement, Precision, TransformKind
from fftbench.registry import available_backends, create_adapter, create_context, supported_variants
from fftbench.suite import BenchmarkSuite, Status

R, C = TransformKind.REAL, TransformKind.COMPLEX
IN, OUT = Placement.INPLACE, Placement.OUTPLACE

TOLERANCE = {Precision.SINGLE: 1e-4, Precision.DOUBLE: 1e-10}


def random_input(adapter, seed=42):
    rng = np.random.default_rng(seed)
    values = rng.random(adapter.host_shape)
    if np.issubdtype(adapter.host_dtype, np.complexfloating):
        values = values + 1j * rng.random(adapter.host_shape)
    return values.astype(adapter.host_dtype)


class AdapterTestMixin:
    """Round trip helpers shared by the backend test cases."""

    def _round_trip(self, adapter, host_in):
        if adapter.state is AdapterState.CONSTRUCTED:
            adapter.allocate()
        adapter.init_forward()
        adapter.upload(host_in)
        adapter.execute_forward()
        adapter.init_inverse()
        adapter.execute_inverse()
        host_out = adapter.download(adapter.new_host_buffer())
        scale = 1 if adapter.is_normalized else adapter.geometry.n
        return host_out / scale

    def _assert_round_trip(self, adapter):
        host_in = random_input(adapter)
        result = self._round_trip(adapter, host_in)
        tol = TOLERANCE[adapter.geometry.precision]
        self.assertTrue(np.allclose(result, host_in, rtol=tol, atol=tol),
                        f"round trip failed for {adapter.describe()}")


class TestFftwAdapter(AdapterTestMixin, unittest.TestCase):

    def setUp(self):
        self.context = FftwContext()
        self.context.create()

    def tearDown(self):
        self.context.destroy()
        fftbench.reset_config()

    def test_round_trip_all_variants(self):
        for extents in [(16,), (8, 6), (4, 6, 5)]:
            for kind, placement in supported_variants('fftw'):
                for precision in (Precision.SINGLE, Precision.DOUBLE):
                    with FftwAdapter(self.context, extents, kind, placement, precision) as adapter:
                        self._assert_round_trip(adapter)

    def test_forward_matches_numpy(self):
        adapter = FftwAdapter(self.context, (8, 6), R, IN, Precision.DOUBLE)
        host_in = random_input(adapter)
        adapter.allocate()
        adapter.init_forward()
        adapter.upload(host_in)
        adapter.execute_forward()
        spectrum = np.array(adapter._buffers.spectrum)
        self.assertTrue(np.allclose(spectrum, np.fft.rfftn(host_in), rtol=1e-10, atol=1e-10))
        adapter.destroy()

    def test_upload_download_without_transform(self):
        """Data survives upload and download, including the row-strided layout"""
        for kind, placement in supported_variants('fftw'):
            adapter = FftwAdapter(self.context, (5, 7), kind, placement, Precision.SINGLE)
            host_in = random_input(adapter)
            adapter.allocate()
            adapter.init_forward()
            adapter.upload(host_in)
            host_out = adapter.download(adapter.new_host_buffer())
            self.assertTrue(np.array_equal(host_in, host_out), adapter.describe())
            adapter.destroy()

    def test_measuring_planner_keeps_data(self):
        for kind, placement in [(R, IN), (R, OUT), (C, OUT)]:
            adapter = FftwAdapter(self.context, (16, 12), kind, placement, Precision.DOUBLE,
                                  planner='FFTW_MEASURE')
            self._assert_round_trip(adapter)
            adapter.destroy()

    def test_plans_reused_across_trials(self):
        adapter = FftwAdapter(self.context, (32,), R, OUT, Precision.DOUBLE)
        self.assertIs(adapter.plan_reuse, PlanReuse.REUSABLE)
        self._assert_round_trip(adapter)
        inverse = adapter._plan
        self.assertIs(adapter._plan_direction, Direction.INVERSE)

        # the inverse handle is kept for the next trial until init_forward replaces it
        adapter.init_forward()
        self.assertIs(adapter._plan_direction, Direction.FORWARD)
        self.assertIsNot(adapter._plan, inverse)
        adapter.destroy()

    def test_one_live_plan(self):
        live = []

        class CountingAdapter(FftwAdapter):
            def _build_plan(self, direction):
                plan = super()._build_plan(direction)
                live.append(plan)
                return plan

            def _release_plan(self, plan):
                live.remove(plan)
                super()._release_plan(plan)

        adapter = CountingAdapter(self.context, (8, 6), R, OUT, Precision.DOUBLE)
        adapter.allocate()
        adapter.init_forward()
        self.assertEqual(len(live), 1)
        adapter.upload(random_input(adapter))
        adapter.execute_forward()
        adapter.init_inverse()
        self.assertEqual(len(live), 1)
        adapter.execute_inverse()
        adapter.download(adapter.new_host_buffer())
        adapter.destroy()
        self.assertEqual(live, [])

    def test_invalid_planner(self):
        with self.assertRaises(ValueError):
            FftwAdapter(self.context, (16,), C, OUT, Precision.DOUBLE, planner='FFTW_FAST')

    def test_planner_from_config(self):
        fftbench.configure(planning_default_strategy='FFTW_MEASURE')
        adapter = FftwAdapter(self.context, (16,), C, OUT, Precision.DOUBLE)
        self.assertEqual(adapter.planner, 'FFTW_MEASURE')

    def test_half_precision_rejected(self):
        with self.assertRaises(CapabilityError):
            FftwAdapter(self.context, (16,), C, OUT, Precision.HALF)

    def test_sizes(self):
        adapter = FftwAdapter(self.context, (4, 6), R, IN, Precision.DOUBLE)
        self.assertEqual(adapter.get_plan_size_estimate(), 0)
        self.assertEqual(adapter.get_allocation_size(), 256)
        self.assertEqual(adapter.get_transfer_size(), 192)
        adapter.allocate()
        self.assertEqual(adapter._buffers.nbytes, 256)
        adapter.destroy()


class TestLifecycle(unittest.TestCase):

    def setUp(self):
        self.context = FftwContext()
        self.context.create()
        self.adapter = FftwAdapter(self.context, (16,), C, OUT, Precision.DOUBLE)

    def tearDown(self):
        self.adapter.destroy()
        self.context.destroy()

    def test_out_of_order_calls(self):
        with self.assertRaises(LifecycleError):
            self.adapter.execute_forward()
        with self.assertRaises(LifecycleError):
            self.adapter.init_forward()
        self.adapter.allocate()
        with self.assertRaises(LifecycleError):
            self.adapter.allocate()
        with self.assertRaises(LifecycleError):
            self.adapter.get_plan_size_estimate()
        with self.assertRaises(LifecycleError):
            self.adapter.upload(random_input(self.adapter))

    def test_inverse_plan_required(self):
        self.adapter.allocate()
        self.adapter.init_forward()
        self.adapter.upload(random_input(self.adapter))
        self.adapter.execute_forward()
        with self.assertRaises(LifecycleError):
            self.adapter.execute_inverse()

    def test_host_array_checks(self):
        self.adapter.allocate()
        self.adapter.init_forward()
        with self.assertRaises(ValueError):
            self.adapter.upload(np.zeros(8, dtype=np.complex128))
        with self.assertRaises(ValueError):
            self.adapter.upload(np.zeros(16, dtype=np.complex64))
        with self.assertRaises(ValueError):
            self.adapter.upload(np.zeros(32, dtype=np.complex128)[::2])
        with self.assertRaises(TypeError):
            self.adapter.upload([0j] * 16)

    def test_destroy_idempotent(self):
        self.adapter.allocate()
        self.adapter.init_forward()
        self.adapter.destroy()
        self.assertIs(self.adapter.state, AdapterState.DESTROYED)
        self.assertIsNone(self.adapter._buffers)
        self.assertIsNone(self.adapter._plan)
        self.assertIsNone(self.adapter._plan_direction)
        self.adapter.destroy()
        with self.assertRaises(LifecycleError):
            self.adapter.allocate()

    def test_destroy_before_allocate(self):
        self.adapter.destroy()
        self.assertIs(self.adapter.state, AdapterState.DESTROYED)

    def test_context_required(self):
        context = HostContext('numpy')
        with self.assertRaises(ContextError):
            NumpyAdapter(context, (16,), C, OUT, Precision.HALF)


class TestPocketfftAdapters(AdapterTestMixin, unittest.TestCase):

    def setUp(self):
        self.contexts = {name: create_context(name) for name in ('numpy', 'scipy')}
        for context in self.contexts.values():
            context.create()

    def tearDown(self):
        for context in self.contexts.values():
            context.destroy()
        fftbench.reset_config()

    def test_round_trip(self):
        for name, context in self.contexts.items():
            for extents in [(16,), (9,), (8, 6), (4, 6, 5)]:
                for kind, placement in supported_variants(name):
                    for precision in (Precision.SINGLE, Precision.DOUBLE):
                        with create_adapter(context, extents, kind, placement, precision) as adapter:
                            self.assertTrue(adapter.is_normalized)
                            self._assert_round_trip(adapter)

    def test_outplace_only(self):
        self.assertEqual(set(supported_variants('numpy')), {(R, OUT), (C, OUT)})
        with self.assertRaises(CapabilityError):
            create_adapter(self.contexts['numpy'], (16,), R, IN, Precision.DOUBLE)
        with self.assertRaises(CapabilityError):
            NumpyAdapter(self.contexts['numpy'], (16,), C, IN, Precision.DOUBLE)

    def test_complex_shares_plan(self):
        adapter = NumpyAdapter(self.contexts['numpy'], (16,), C, OUT, Precision.DOUBLE)
        self.assertFalse(adapter.requires_inverse_plan)
        real = NumpyAdapter(self.contexts['numpy'], (16,), R, OUT, Precision.DOUBLE)
        self.assertTrue(real.requires_inverse_plan)

    def test_plans_not_cached(self):
        adapter = NumpyAdapter(self.contexts['numpy'], (16,), R, OUT, Precision.DOUBLE)
        self.assertIs(adapter.plan_reuse, PlanReuse.NOT_REUSABLE)
        self._assert_round_trip(adapter)
        # only the inverse handle is alive after the round trip
        self.assertIs(adapter._plan_direction, Direction.INVERSE)
        adapter.destroy()
        self.assertIsNone(adapter._plan)

    def test_scipy_workers(self):
        adapter = ScipyAdapter(self.contexts['scipy'], (16,), C, OUT, Precision.DOUBLE, workers=2)
        self.assertEqual(adapter.workers, 2)
        self._assert_round_trip(adapter)
        adapter.destroy()

    def test_unscaled_inverse(self):
        context = self.contexts['numpy']
        for kind in (R, C):
            adapter = NumpyAdapter(context, (8, 6), kind, OUT, Precision.DOUBLE, scaling='unscaled')
            self.assertFalse(adapter.is_normalized)
            self.assertIn('unscaled', adapter.describe())
            host_in = random_input(adapter)
            adapter.allocate()
            adapter.init_forward()
            adapter.upload(host_in)
            adapter.execute_forward()
            adapter.init_inverse()
            adapter.execute_inverse()
            host_out = adapter.download(adapter.new_host_buffer())
            adapter.destroy()
            self.assertTrue(np.allclose(host_out, 48 * host_in, rtol=1e-10, atol=1e-10))

    def test_scaling_option(self):
        context = self.contexts['scipy']
        adapter = ScipyAdapter(context, (16,), C, OUT, Precision.DOUBLE)
        self.assertEqual(adapter.scaling, 'scaled')
        self.assertTrue(adapter.is_normalized)
        with self.assertRaises(ValueError):
            ScipyAdapter(context, (16,), C, OUT, Precision.DOUBLE, scaling='ortho')

        fftbench.configure(pocketfft_scaling='unscaled')
        adapter = ScipyAdapter(context, (16,), R, OUT, Precision.SINGLE)
        self.assertFalse(adapter.is_normalized)
        self._assert_round_trip(adapter)
        adapter.destroy()

    def test_unscaled_suite_run_verifies(self):
        records = BenchmarkSuite(self.contexts['numpy'], [(32,), (8, 6)],
                                 adapter_options={'scaling': 'unscaled'}).run()
        self.assertEqual([r for r in records if r.status is not Status.OK], [])
        downloads = [r for r in records if r.phase == 'download']
        self.assertEqual(len(downloads), 2 * 2 * 2)

    def test_backend_errors_wrapped(self):
        class FailingAdapter(NumpyAdapter):
            def _execute(self, plan, direction):
                raise MemoryError("out of memory")

        adapter = FailingAdapter(self.contexts['numpy'], (16,), C, OUT, Precision.DOUBLE)
        adapter.allocate()
        adapter.init_forward()
        adapter.upload(random_input(adapter))
        with self.assertRaises(BackendError) as cm:
            adapter.execute_forward()
        self.assertEqual(cm.exception.operation, 'execute_forward')
        self.assertIsInstance(cm.exception.__cause__, MemoryError)
        self.assertIs(adapter.state, AdapterState.UPLOADED)
        adapter.destroy()


class TestFftwHelpers(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.tmpdir)

    def test_select_threads(self):
        self.assertEqual(select_threads(1024, 1, max_threads=8), 1)
        self.assertEqual(select_threads(1 << 22, 1, max_threads=8), 2)
        self.assertEqual(select_threads(1 << 21, 2, max_threads=8), 4)
        self.assertEqual(select_threads(1 << 21, 3, max_threads=1), 1)

    def test_wisdom_roundtrip_through_context(self):
        filename = os.path.join(self.tmpdir, 'wisdom', 'fftw.wisdom')
        with FftwContext(wisdom_file=filename) as context:
            adapter = FftwAdapter(context, (64,), C, OUT, Precision.DOUBLE, planner='FFTW_MEASURE')
            adapter.allocate()
            adapter.init_forward()
            adapter.destroy()
        self.assertTrue(os.path.exists(filename))
        self.assertTrue(import_wisdom(filename))

    def test_missing_wisdom_file(self):
        self.assertFalse(import_wisdom(os.path.join(self.tmpdir, 'missing.wisdom')))


class TestRegistry(unittest.TestCase):

    def test_available_backends(self):
        self.assertEqual(available_backends(), ['cufft', 'fftw', 'numpy', 'scipy'])

    def test_unknown_backend(self):
        with self.assertRaises(ValueError):
            create_context('mkl')

    def test_context_types(self):
        self.assertIsInstance(create_context('fftw'), FftwContext)
        context = create_context('scipy')
        self.assertIsInstance(context, HostContext)
        self.assertEqual(context.backend, 'scipy')
        self.assertFalse(context.created)

    def test_context_capabilities(self):
        with create_context('numpy') as context:
            caps = context.capabilities()
            self.assertFalse(caps.supports_half_precision)
            self.assertGreater(caps.available_device_bytes, 0)
            self.assertGreater(context.host_memory_bytes(), 0)
        self.assertFalse(context.created)
        with self.assertRaises(ContextError):
            context.capabilities()


if __name__ == '__main__':
    unittest.main()
