"""Integer genomes and the cursor that reads them."""

from __future__ import annotations

import random
from typing import Sequence, Tuple

Genome = Tuple[int, ...]

DEFAULT_GENE_MAX = 65_535


def random_genome(rng: random.Random, length: int, gene_max: int = DEFAULT_GENE_MAX) -> Genome:
    """Draw a genome of ``length`` genes uniformly from ``[0, gene_max]``."""

    if length <= 0:
        raise ValueError("genome length must be positive")
    return tuple(rng.randint(0, gene_max) for _ in range(length))


def take(genome: Sequence[int], position: int) -> Tuple[int, int | None]:
    """Read the gene at ``position``.

    Returns the next position and the gene, or ``None`` once the genome is
    exhausted; the position saturates at the genome length.
    """

    if position >= len(genome):
        return len(genome), None
    return position + 1, abs(int(genome[position]))


class GeneCursor:
    """Sequential reader over one genome, local to a single generation call."""

    def __init__(self, genome: Sequence[int], gene_max: int = DEFAULT_GENE_MAX) -> None:
        self.genome: Genome = tuple(genome)
        self.gene_max = max(1, gene_max)
        self.position = 0

    @property
    def exhausted(self) -> bool:
        return self.position >= len(self.genome)

    @property
    def consumed(self) -> int:
        return self.position

    def next_gene(self) -> int | None:
        self.position, gene = take(self.genome, self.position)
        return gene

    def choose(self, options: int) -> int:
        """Pick an index in ``[0, options)``; exhausted genomes pick ``0``."""

        gene = self.next_gene()
        if gene is None or options <= 0:
            return 0
        return gene % options

    def int_range(self, low: int, high: int) -> int:
        """Pick an integer in ``[low, high]``; exhausted genomes pick ``low``."""

        if high < low:
            low, high = high, low
        return low + self.choose(high - low + 1)

    def float_range(self, low: float, high: float) -> float:
        gene = self.next_gene()
        if gene is None:
            return low
        fraction = min(gene, self.gene_max) / self.gene_max
        return low + fraction * (high - low)
