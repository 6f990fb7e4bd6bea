"""
Run the benchmark suite on one backend and print a per-phase timing table.

Usage:
    python benchmarks/run_suite.py --backend fftw --extents 1024 64x64 --trials 5
    python benchmarks/run_suite.py --backend cufft --precisions half single --csv results.csv
"""

import argparse
import csv
import statistics
from collections import OrderedDict

from tabulate import tabulate

import fftbench
from fftbench import Placement, Precision, ResultCollector, Status, TransformKind, parse_extents

PHASES = ['allocate', 'init_forward', 'upload', 'execute_forward',
          'init_inverse', 'execute_inverse', 'download', 'destroy']


def format_time(seconds):
    """Format time in a human-readable way."""
    if seconds < 0.001:
        return f"{seconds * 1e6:.2f} µs"
    elif seconds < 1:
        return f"{seconds * 1e3:.2f} ms"
    else:
        return f"{seconds:.4f} s"


def timing_table(records):
    """Median duration per phase for every configuration that produced ok records."""
    grouped = OrderedDict()
    for r in records:
        if r.status is not Status.OK:
            continue
        key = (r.kind.value, r.placement.value, r.precision.value, 'x'.join(map(str, r.extents)))
        grouped.setdefault(key, {}).setdefault(r.phase, []).append(r.duration_ns)

    rows = []
    for key, phases in grouped.items():
        row = list(key)
        for phase in PHASES:
            durations = phases.get(phase)
            row.append(format_time(statistics.median(durations) / 1e9) if durations else '-')
        rows.append(row)
    return rows


def problem_table(records):
    return [[r.status.value, r.kind.value, r.placement.value, r.precision.value,
             'x'.join(map(str, r.extents)), r.phase, r.message]
            for r in records if r.status is not Status.OK]


def write_csv(records, filename):
    with open(filename, 'w', newline='') as f:
        writer = csv.DictWriter(f, fieldnames=list(records[0].to_dict()) if records else ['backend'])
        writer.writeheader()
        for r in records:
            row = r.to_dict()
            row['extents'] = 'x'.join(map(str, row['extents']))
            writer.writerow(row)
    print(f"Wrote {len(records)} records to {filename}")


def main():
    parser = argparse.ArgumentParser(description="FFT backend benchmark suite")
    parser.add_argument("--backend", default="fftw", choices=fftbench.available_backends(),
                        help="Backend to benchmark")
    parser.add_argument("--extents", nargs="+", default=["1024", "64x64", "16x16x16"],
                        help="Extents such as 1024 or 64x64x32")
    parser.add_argument("--kinds", nargs="+", default=[k.value for k in TransformKind],
                        choices=[k.value for k in TransformKind])
    parser.add_argument("--placements", nargs="+", default=[p.value for p in Placement],
                        choices=[p.value for p in Placement])
    parser.add_argument("--precisions", nargs="+", default=["single", "double"],
                        choices=[p.value for p in Precision])
    parser.add_argument("--trials", type=int, default=3, help="Runs per configuration")
    parser.add_argument("--seed", type=int, default=0)
    parser.add_argument("--no-verify", action="store_true", help="Skip the round trip check")
    parser.add_argument("--csv", type=str, default=None, help="Write all records to a CSV file")
    parser.add_argument("--verbose", action="store_true", help="Log skips and failures")
    args = parser.parse_args()

    if args.verbose:
        fftbench.configure(logging_level='INFO')

    collector = ResultCollector()
    context = fftbench.create_context(args.backend)
    with context:
        print(f"Backend: {args.backend}")
        print(f"Device: {context.capabilities().device_description}")
        suite = fftbench.BenchmarkSuite(
            context,
            [parse_extents(e) for e in args.extents],
            kinds=[TransformKind(k) for k in args.kinds],
            placements=[Placement(p) for p in args.placements],
            precisions=[Precision(p) for p in args.precisions],
            trials=args.trials,
            verify=not args.no_verify,
            seed=args.seed,
            sink=collector,
        )
        suite.run()

    records = collector.records
    print()
    print(tabulate(timing_table(records),
                   headers=['kind', 'placement', 'precision', 'extents'] + PHASES,
                   tablefmt='grid'))

    problems = problem_table(records)
    if problems:
        print()
        print(tabulate(problems, headers=['status', 'kind', 'placement', 'precision', 'extents',
                                          'phase', 'message'], tablefmt='grid'))

    summary = collector.summary()
    print(f"\nConfigurations: {summary['ok']} ok, {summary['skipped']} skipped, {summary['failed']} failed")

    if args.csv:
        write_csv(records, args.csv)


if __name__ == "__main__":
    main()
