"""Parallel root collection over a Littlewood family."""

from __future__ import annotations

import itertools
import logging
import multiprocessing
import time
from dataclasses import dataclass, field
from multiprocessing.pool import Pool
from typing import Iterable, Iterator, Optional

import numpy as np

from .polynomial import LittlewoodFamily, Polynomial
from .solver import AberthSolver

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChunkOutcome:
    """Roots found by one worker task, kept local until the final merge."""

    roots: np.ndarray
    solved: int
    unconverged: int


def _solve_chunk(payload: tuple[AberthSolver, list[Polynomial]]) -> ChunkOutcome:
    solver, polynomials = payload
    found = []
    unconverged = 0
    for polynomial in polynomials:
        result = solver.solve(polynomial)
        found.append(result.roots)
        if not result.converged:
            unconverged += 1
    roots = np.concatenate(found) if found else np.empty(0, dtype=np.complex128)
    return ChunkOutcome(roots=roots, solved=len(polynomials), unconverged=unconverged)


def _chunked(polynomials: Iterable[Polynomial], size: int) -> Iterator[list[Polynomial]]:
    iterator = iter(polynomials)
    while True:
        chunk = list(itertools.islice(iterator, size))
        if not chunk:
            return
        yield chunk


@dataclass
class RootAccumulator:
    """Solve every polynomial of a degree and merge the roots into one set.

    Tasks never share mutable state: each chunk of polynomials is solved into
    a task-local array and the arrays are concatenated once all tasks finish.
    With ``processes == 1``, or when the family fits in a single chunk, the
    same worker runs in-process.

    Used as a context manager the accumulator keeps one worker pool open for
    every degree it solves; outside one, each call starts and stops its own.
    """

    solver: AberthSolver = field(default_factory=AberthSolver)
    processes: Optional[int] = None
    chunk_size: int = 256
    _pool: Optional[Pool] = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.chunk_size < 1:
            raise ValueError("chunk_size must be at least 1.")
        if self.processes is not None and self.processes < 1:
            raise ValueError("processes must be at least 1.")

    def __enter__(self) -> "RootAccumulator":
        self.open()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def pool_open(self) -> bool:
        return self._pool is not None

    def open(self) -> None:
        """Start the worker pool if this accumulator runs tasks in parallel."""

        if self._pool is None and self.processes != 1:
            context = multiprocessing.get_context("spawn")
            self._pool = context.Pool(processes=self.processes)
            logger.debug("Started worker pool with %s processes", self.processes or "cpu_count")

    def close(self) -> None:
        """Stop the worker pool, dropping any task still queued."""

        if self._pool is None:
            return
        pool, self._pool = self._pool, None
        pool.terminate()
        pool.join()
        logger.debug("Worker pool stopped")

    def accumulate(self, degree: int) -> np.ndarray:
        family = LittlewoodFamily(degree)
        return self.accumulate_polynomials(family, total=len(family))

    def accumulate_polynomials(self, polynomials: Iterable[Polynomial], *, total: Optional[int] = None) -> np.ndarray:
        start = time.perf_counter()
        chunks = _chunked(polynomials, self.chunk_size)
        head = list(itertools.islice(chunks, 2))
        payloads = ((self.solver, chunk) for chunk in itertools.chain(head, chunks))

        if self.processes == 1 or len(head) < 2:
            outcomes = [_solve_chunk(payload) for payload in payloads]
        elif self._pool is not None:
            outcomes = self._run_on_pool(self._pool, payloads)
        else:
            with multiprocessing.get_context("spawn").Pool(processes=self.processes) as pool:
                outcomes = list(pool.imap_unordered(_solve_chunk, payloads))

        solved = sum(outcome.solved for outcome in outcomes)
        unconverged = sum(outcome.unconverged for outcome in outcomes)
        if outcomes:
            roots = np.concatenate([outcome.roots for outcome in outcomes])
        else:
            roots = np.empty(0, dtype=np.complex128)

        elapsed = time.perf_counter() - start
        if total is not None and solved != total:
            logger.warning("Solved %d polynomials, expected %d", solved, total)
        if unconverged:
            logger.debug("%d of %d solves hit the iteration cap", unconverged, solved)
        logger.info("Collected %d roots from %d polynomials in %.2fs", roots.size, solved, elapsed)
        return roots

    def _run_on_pool(self, pool: Pool, payloads: Iterable[tuple[AberthSolver, list[Polynomial]]]) -> list[ChunkOutcome]:
        try:
            return list(pool.imap_unordered(_solve_chunk, payloads))
        except Exception:
            # Tasks of the failed batch may still be queued on the shared pool.
            self.close()
            raise
