import time
import unittest
import importlib.util

from fftbench.timer import DeviceEventTimer, HostTimer

HAVE_CUPY = importlib.util.find_spec("cupy") is not None


class TestHostTimer(unittest.TestCase):

    def test_measures_nanoseconds(self):
        elapsed = HostTimer().measure(lambda: time.sleep(0.01))
        self.assertIsInstance(elapsed, int)
        self.assertGreaterEqual(elapsed, 5_000_000)
        self.assertLess(elapsed, 5_000_000_000)

    def test_runs_operation_once(self):
        calls = []
        HostTimer().measure(lambda: calls.append(1))
        self.assertEqual(calls, [1])

    def test_propagates_errors(self):
        def fail():
            raise RuntimeError("boom")
        with self.assertRaises(RuntimeError):
            HostTimer().measure(fail)


@unittest.skipIf(not HAVE_CUPY, "cupy not installed")
class TestDeviceEventTimer(unittest.TestCase):

    def test_measures_device_work(self):
        import cupy
        try:
            if cupy.cuda.runtime.getDeviceCount() == 0:
                self.skipTest("no CUDA device")
        except cupy.cuda.runtime.CUDARuntimeError:
            self.skipTest("no CUDA device")
        x = cupy.random.random(1 << 20)
        elapsed = DeviceEventTimer().measure(lambda: cupy.fft.fft(x))
        self.assertGreaterEqual(elapsed, 0)


if __name__ == '__main__':
    unittest.main()
