#!/usr/bin/env python3
"""
Parallel Boltzmann sampling using worker threads.

Workers race independent ceiled rejection attempts against the same
generator; the first accepted sample wins and the others are stopped.
Oracles are solved once up front and only read by the workers, every
worker owns its random source and generation states.
"""

import sys
import json
import queue
import random
import threading
import time
from typing import Optional

from boltzmann_gen import (Accepted, Config, Generator, Sample, StdRandomSource,
                           SAMPLERS, make_generator)
from boltzmann_system import RetryLimitExceeded, unpoint


def worker_thread(worker_id: int, gen: Generator, size: Optional[int], seed: Optional[int],
                  output_queue: queue.Queue, stop_event: threading.Event):
    """Worker that runs attempts until one is accepted or the race is over."""
    # Each worker gets a unique seed
    source = StdRandomSource(random.Random((seed if seed is not None else 42) + worker_id))
    max_retries = gen.config.max_retries
    attempts = 0

    try:
        while not stop_event.is_set():
            attempts += 1
            result = gen.attempt_once(size, source)
            if isinstance(result, Accepted):
                output_queue.put(('sample', result))
                break
            if max_retries is not None and attempts >= max_retries:
                break
    except Exception as e:
        output_queue.put(('error', e))
    finally:
        output_queue.put(('done', attempts))


def parallel_sample(gen: Generator, size: Optional[int] = None, workers: int = 4,
                    seed: Optional[int] = None) -> Sample:
    """
    First accepted sample of `workers` concurrent rejection loops.

    Args:
        gen: Generator shared by all workers
        size: Target size (None = the generator's default size)
        workers: Number of worker threads
        seed: Base seed, worker i uses seed + i

    The returned attempt count sums the attempts of every worker. Errors
    raised by a worker are re-raised here; RetryLimitExceeded when every
    worker ran out of retries.
    """
    if workers < 1:
        raise ValueError("workers must be positive")
    if size is None:
        size = gen.size
    gen.prepare(size)

    output_queue: queue.Queue = queue.Queue()
    stop_event = threading.Event()
    threads = []
    for i in range(workers):
        t = threading.Thread(target=worker_thread, daemon=True,
                             args=(i, gen, size, seed, output_queue, stop_event))
        t.start()
        threads.append(t)

    winner = None
    error = None
    total_attempts = 0
    workers_done = 0
    try:
        while workers_done < workers:
            msg_type, msg_data = output_queue.get()
            if msg_type == 'sample':
                if winner is None:
                    winner = msg_data
                stop_event.set()
            elif msg_type == 'error':
                if error is None:
                    error = msg_data
                stop_event.set()
            elif msg_type == 'done':
                workers_done += 1
                total_attempts += msg_data
    finally:
        stop_event.set()
        for t in threads:
            t.join()

    if error is not None:
        raise error
    if winner is None:
        raise RetryLimitExceeded(gen.target, total_attempts, gen.window(size))
    return Sample(winner.value, winner.size, total_attempts)


if __name__ == '__main__':
    import argparse
    from builtin_systems import SYSTEMS, render

    parser = argparse.ArgumentParser(description='Parallel Boltzmann sampling')
    parser.add_argument('--workers', type=int, default=4,
                        help='Number of worker threads')
    parser.add_argument('--system', default='tree', choices=sorted(SYSTEMS))
    parser.add_argument('--sampler', default='singular', choices=list(SAMPLERS))
    parser.add_argument('--size', type=int, default=100)
    parser.add_argument('--n', type=int, default=10,
                        help='Number of samples to draw')
    parser.add_argument('--max-retries', type=int)
    parser.add_argument('--seed', type=int, default=42)

    args = parser.parse_args()

    config = Config(max_retries=args.max_retries, seed=args.seed)
    gen = make_generator(args.system, args.sampler, config)

    start_time = time.time()
    total_attempts = 0
    for i in range(args.n):
        sample = parallel_sample(gen, args.size, args.workers, args.seed + i * args.workers)
        total_attempts += sample.attempts
        print(json.dumps({'value': render(unpoint(sample.value)), 'size': sample.size,
                          'attempts': sample.attempts}))

    elapsed = time.time() - start_time
    sys.stderr.write(f"\n[{args.n} samples | {elapsed:.2f}s | {args.workers} workers | "
                     f"{total_attempts / max(args.n, 1):.1f} attempts/sample]\n")
