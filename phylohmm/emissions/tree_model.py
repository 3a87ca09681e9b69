"""
Reference tree-likelihood collaborator.

Felsenstein pruning over a scikit-bio tree for single-nucleotide
substitution models. Without a rate matrix the F81 process is used (Jukes-
Cantor when the background frequencies are uniform); a general rate matrix
is exponentiated through its eigen-decomposition. Gap and missing-data
characters are marginalized at the tips unless gaps are disallowed.
"""

from __future__ import annotations

import io
import math
from typing import Dict, List, Optional, Sequence, Union

import numpy as np
from skbio import TreeNode

from phylohmm.errors import InputFormatError
from phylohmm.types.alignment import DEFAULT_ALPHABET, GAP_CHAR, complement_char

NEG_INF = float("-inf")
REVERSIBILITY_TOLERANCE = 1e-8


def parse_newick(newick: str) -> TreeNode:
    """Parse a Newick string into a scikit-bio tree."""
    text = newick.strip()
    if not text.endswith(";"):
        text += ";"
    return TreeNode.read(io.StringIO(text), format="newick")


class TreeModel:
    """Substitution model on a tree with per-column likelihoods.

    Attributes:
        tree: Rooted scikit-bio tree with branch lengths.
        background_freqs: Equilibrium frequencies (root prior).
        rate_matrix: Optional rate matrix; F81 when absent.
        scale: Multiplier applied to every branch length.
        allow_gaps: If False, any gap in a column has probability zero.
        nratecats: Number of rate categories (rate variation when > 1).
        order: Markov order of the substitution process.
    """

    def __init__(
        self,
        tree: Union[TreeNode, str],
        background_freqs: Sequence[float],
        rate_matrix: Optional[np.ndarray] = None,
        scale: float = 1.0,
        allow_gaps: bool = True,
        nratecats: int = 1,
        order: int = 0,
        alphabet: str = DEFAULT_ALPHABET,
    ) -> None:
        if isinstance(tree, str):
            tree = parse_newick(tree)
        freqs = np.asarray(background_freqs, dtype=float)
        if freqs.shape != (len(alphabet),):
            raise ValueError(
                f"background_freqs must have {len(alphabet)} entries, got {freqs.shape}"
            )
        if np.any(freqs < 0) or not math.isclose(freqs.sum(), 1.0, abs_tol=1e-6):
            raise ValueError("background_freqs must be a probability distribution")
        if rate_matrix is not None:
            rate_matrix = np.asarray(rate_matrix, dtype=float)
            if rate_matrix.shape != (len(alphabet), len(alphabet)):
                raise ValueError("rate_matrix must be square over the alphabet")
        if scale <= 0:
            raise ValueError(f"scale must be positive, got {scale}")

        self.tree = tree
        self.background_freqs = freqs
        self.rate_matrix = rate_matrix
        self.scale = scale
        self.allow_gaps = allow_gaps
        self.nratecats = nratecats
        self.order = order
        self.alphabet = alphabet
        self._char_index = {c: i for i, c in enumerate(alphabet)}
        self._prob_cache: Dict[float, np.ndarray] = {}
        self._eigen = None if rate_matrix is None else np.linalg.eig(rate_matrix)

    @classmethod
    def from_newick(cls, newick: str, background_freqs: Sequence[float], **kwargs) -> "TreeModel":
        return cls(parse_newick(newick), background_freqs, **kwargs)

    @property
    def leaf_names(self) -> List[str]:
        return [tip.name for tip in self.tree.tips()]

    def prune(self, names: Sequence[str]) -> List[str]:
        """Remove leaves with no match in ``names`` and return them."""
        wanted = set(names)
        leaves = self.leaf_names
        keep = [leaf for leaf in leaves if leaf in wanted]
        pruned = [leaf for leaf in leaves if leaf not in wanted]
        if not keep:
            raise InputFormatError(
                "no match for leaves of tree in alignment (leaf names must match "
                "alignment names)"
            )
        if pruned:
            self.tree = self.tree.shear(keep)
            self._prob_cache.clear()
        return pruned

    def is_reversible(self) -> bool:
        if self.rate_matrix is None:
            return True
        flux = self.background_freqs[:, None] * self.rate_matrix
        return bool(np.allclose(flux, flux.T, atol=REVERSIBILITY_TOLERANCE))

    def transition_matrix(self, branch_length: float) -> np.ndarray:
        """P(t) for a branch of the given (unscaled) length."""
        t = branch_length * self.scale
        cached = self._prob_cache.get(t)
        if cached is not None:
            return cached
        if self._eigen is None:
            pi = self.background_freqs
            beta = 1.0 / (1.0 - float(np.dot(pi, pi)))
            decay = math.exp(-beta * t)
            probs = decay * np.eye(len(pi)) + (1.0 - decay) * np.tile(pi, (len(pi), 1))
        else:
            eigvals, eigvecs = self._eigen
            probs = np.real(
                eigvecs @ np.diag(np.exp(eigvals * t)) @ np.linalg.inv(eigvecs)
            )
            probs = np.clip(probs, 0.0, None)
        self._prob_cache[t] = probs
        return probs

    def _tip_partial(self, char: Optional[str]) -> Optional[np.ndarray]:
        """Conditional likelihood vector at a tip, or None for probability zero."""
        nchars = len(self.alphabet)
        if char is None:
            return np.ones(nchars)
        idx = self._char_index.get(char)
        if idx is not None:
            partial = np.zeros(nchars)
            partial[idx] = 1.0
            return partial
        if char == GAP_CHAR and not self.allow_gaps:
            return None
        return np.ones(nchars)

    def column_log_likelihood(
        self, column: str, names: Sequence[str], reverse_strand: bool = False
    ) -> float:
        """Log-probability of one alignment column under the model."""
        chars = {
            name: (complement_char(c) if reverse_strand else c)
            for name, c in zip(names, column)
        }
        partials: Dict[int, np.ndarray] = {}
        log_scale = 0.0
        for node in self.tree.postorder(include_self=True):
            if node.is_tip():
                partial = self._tip_partial(chars.get(node.name))
                if partial is None:
                    return NEG_INF
            else:
                partial = np.ones(len(self.alphabet))
                for child in node.children:
                    probs = self.transition_matrix(child.length or 0.0)
                    partial = partial * (probs @ partials.pop(id(child)))
                peak = partial.max()
                if peak <= 0:
                    return NEG_INF
                partial = partial / peak
                log_scale += math.log(peak)
            partials[id(node)] = partial
        root = partials[id(self.tree)]
        total = float(np.dot(self.background_freqs, root))
        if total <= 0:
            return NEG_INF
        return math.log(total) + log_scale


def default_likelihood_fn(
    model: TreeModel, pattern: Sequence[str], names: Sequence[str], reverse: bool
) -> float:
    """Score the right-most column of a tuple pattern."""
    return model.column_log_likelihood(pattern[-1], names, reverse_strand=reverse)


__all__ = ["TreeModel", "parse_newick", "default_likelihood_fn"]
